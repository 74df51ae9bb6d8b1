"""
Shared helpers for callables that may be sync or async
"""

import inspect
from typing import Any, Callable


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable, otherwise return it unchanged"""
    if inspect.isawaitable(value):
        return await value
    return value


async def call_maybe_async(func: Callable, *args, **kwargs) -> Any:
    """Call a sync or async function and return its result"""
    return await maybe_await(func(*args, **kwargs))
