"""
StageFlow Errors

Provides:
- StageFlowError base class with machine-readable codes
- Transition, middleware, plugin and configuration errors
"""

from typing import Any, Dict, List, Optional


class StageFlowError(Exception):
    """Base class for all engine errors"""

    code = "STAGEFLOW_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class TransitionError(StageFlowError):
    """A transition could not be resolved or a condition failed"""

    code = "TRANSITION_ERROR"


class MiddlewareError(StageFlowError):
    """A middleware failed or misused its transition context"""

    code = "MIDDLEWARE_ERROR"


class PluginError(StageFlowError):
    """Plugin registration, install/uninstall or hook failure"""

    code = "PLUGIN_ERROR"


class ConfigurationError(StageFlowError):
    """Malformed stage flow configuration"""

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context=context)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = list(self.errors)
        return result
