"""Tests for the middleware pipeline and built-in middleware"""

import logging

import pytest

from stageflow import (
    Middleware,
    MiddlewareError,
    StageDefinition,
    StageFlowConfig,
    StageFlowEngine,
    TransitionDefinition,
    TransitionError,
)
from stageflow.middleware import (
    MiddlewarePipeline,
    PipelineOutcome,
    compose_middleware,
    conditional_middleware,
    event_specific_middleware,
    logging_middleware,
    rate_limit_middleware,
    retry_middleware,
    stage_specific_middleware,
    timing_middleware,
    validation_middleware,
)
from stageflow.statemachine import TransitionContext


def tracer(name, calls):
    async def handler(ctx, next):
        calls.append(name)
        await next()
    return Middleware(name, handler)


def context(source="a", target="b", event="go"):
    return TransitionContext(source, target, event, stage_names=frozenset({"a", "b", "c"}))


class TestPipeline:
    """Tests for MiddlewarePipeline"""

    @pytest.mark.asyncio
    async def test_scoped_runs_before_global(self):
        """Test transition-scoped middleware runs before global middleware"""
        calls = []
        validate_m = tracer("validateM", calls)
        config = StageFlowConfig(
            initial="input",
            stages=[
                StageDefinition(
                    name="input",
                    transitions=[TransitionDefinition(target="validation", event="submit", middleware=[validate_m])],
                ),
                StageDefinition(name="validation"),
            ],
            middleware=[tracer("logM", calls)],
        )
        engine = StageFlowEngine(config)
        await engine.start()

        await engine.send("submit")

        assert calls == ["validateM", "logM"]

    @pytest.mark.asyncio
    async def test_declaration_order(self):
        """Test global middleware runs in registration order"""
        calls = []
        pipeline = MiddlewarePipeline([tracer("one", calls), tracer("two", calls)])
        pipeline.add(tracer("three", calls))

        result = await pipeline.run(context())

        assert calls == ["one", "two", "three"]
        assert result.outcome == PipelineOutcome.COMPLETED
        assert result.executed == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_missing_next_halts(self):
        """Test a middleware that does not call next halts the pipeline"""
        calls = []
        pipeline = MiddlewarePipeline([Middleware("silent", lambda ctx, next: None), tracer("after", calls)])

        result = await pipeline.run(context())

        assert result.outcome == PipelineOutcome.HALTED
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancel_short_circuits(self):
        """Test cancel stops later middleware"""
        calls = []

        async def cancel(ctx, next):
            ctx.cancel()
            await next()

        pipeline = MiddlewarePipeline([Middleware("cancel", cancel), tracer("after", calls)])

        result = await pipeline.run(context())

        assert result.outcome == PipelineOutcome.CANCELLED
        assert calls == []

    @pytest.mark.asyncio
    async def test_modify_visible_downstream(self):
        """Test rewrites are seen by later middleware"""
        seen = []

        async def redirect(ctx, next):
            ctx.modify(to="c", data={"x": 1})
            await next()

        async def observe(ctx, next):
            seen.append((ctx.target, ctx.data))
            await next()

        pipeline = MiddlewarePipeline([Middleware("redirect", redirect), Middleware("observe", observe)])
        await pipeline.run(context())

        assert seen == [("c", {"x": 1})]

    @pytest.mark.asyncio
    async def test_modify_after_cancel_rejected(self):
        """Test modify on a cancelled context raises MiddlewareError"""
        async def both(ctx, next):
            ctx.cancel()
            ctx.modify(to="c")

        pipeline = MiddlewarePipeline([Middleware("both", both)])

        with pytest.raises(MiddlewareError):
            await pipeline.run(context())

    @pytest.mark.asyncio
    async def test_cancel_after_modify_same_middleware_rejected(self):
        """Test cancel in the same invocation as modify raises MiddlewareError"""
        async def both(ctx, next):
            ctx.modify(to="c")
            ctx.cancel()

        pipeline = MiddlewarePipeline([Middleware("both", both)])

        with pytest.raises(MiddlewareError):
            await pipeline.run(context())

    @pytest.mark.asyncio
    async def test_cancel_after_earlier_modify_allowed(self):
        """Test a later middleware may cancel an earlier rewrite"""
        async def rewrite(ctx, next):
            ctx.modify(to="c")
            await next()

        async def veto(ctx, next):
            ctx.cancel()

        pipeline = MiddlewarePipeline([Middleware("rewrite", rewrite), Middleware("veto", veto)])
        result = await pipeline.run(context())

        assert result.outcome == PipelineOutcome.CANCELLED

    @pytest.mark.asyncio
    async def test_modify_unknown_stage(self):
        """Test redirecting to an undeclared stage raises TransitionError"""
        async def redirect(ctx, next):
            ctx.modify(to="nowhere")

        pipeline = MiddlewarePipeline([Middleware("redirect", redirect)])

        with pytest.raises(TransitionError):
            await pipeline.run(context())

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self):
        """Test plain exceptions become MiddlewareError naming the middleware"""
        async def broken(ctx, next):
            raise ValueError("bad input")

        pipeline = MiddlewarePipeline([Middleware("broken", broken)])

        with pytest.raises(MiddlewareError) as exc_info:
            await pipeline.run(context())
        assert "broken" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_duplicate_and_unknown_names(self):
        """Test registry rejects duplicates and unknown removals"""
        pipeline = MiddlewarePipeline()
        pipeline.add(Middleware("one"))

        with pytest.raises(MiddlewareError):
            pipeline.add(Middleware("one"))
        with pytest.raises(MiddlewareError):
            pipeline.remove("two")

        pipeline.remove("one")
        assert pipeline.get_names() == []

    def test_plain_function_is_wrapped(self):
        """Test functions are registered under their name"""
        async def audit(ctx, next):
            await next()

        pipeline = MiddlewarePipeline()
        pipeline.add(audit)

        assert pipeline.get_names() == ["audit"]


class TestEngineIntegration:
    """Tests for middleware effects on committed state"""

    @pytest.mark.asyncio
    async def test_modify_changes_committed_stage(self, wizard):
        """Test modify(to=X) commits X instead of the requested target"""
        async def reroute(ctx, next):
            if ctx.target == "validation":
                ctx.modify(to="done")
            await next()

        engine = StageFlowEngine(wizard)
        engine.add_middleware(Middleware("reroute", reroute))
        await engine.start()

        await engine.send("submit")

        assert engine.get_current_stage() == "done"

    @pytest.mark.asyncio
    async def test_middleware_error_propagates(self, wizard):
        """Test a failing middleware rejects send and leaves state"""
        async def broken(ctx, next):
            raise RuntimeError("nope")

        engine = StageFlowEngine(wizard)
        engine.add_middleware(Middleware("broken", broken))
        await engine.start()

        with pytest.raises(MiddlewareError):
            await engine.send("submit")
        assert engine.get_current_stage() == "input"
        assert not engine.is_transitioning

        engine.remove_middleware("broken")
        assert await engine.send("submit") is True


class TestBuiltinMiddleware:
    """Tests for the built-in middleware catalog"""

    @pytest.mark.asyncio
    async def test_logging_middleware(self, caplog):
        """Test transitions are logged"""
        pipeline = MiddlewarePipeline([logging_middleware()])

        with caplog.at_level(logging.INFO):
            await pipeline.run(context())

        assert "a -> b" in caplog.text

    @pytest.mark.asyncio
    async def test_validation_middleware(self):
        """Test validator failure raises MiddlewareError"""
        pipeline = MiddlewarePipeline([validation_middleware(lambda ctx: ctx.data, error_message="empty")])

        with pytest.raises(MiddlewareError, match="empty"):
            await pipeline.run(context())

    @pytest.mark.asyncio
    async def test_timing_middleware(self):
        """Test timing reports a duration"""
        durations = []
        pipeline = MiddlewarePipeline([timing_middleware(on_complete=lambda d, ctx: durations.append(d))])

        await pipeline.run(context())

        assert len(durations) == 1
        assert durations[0] >= 0

    @pytest.mark.asyncio
    async def test_rate_limit_middleware(self):
        """Test transitions beyond the limit are rejected within the window"""
        now = [0.0]
        pipeline = MiddlewarePipeline([rate_limit_middleware(2, 1000, now=lambda: now[0])])

        await pipeline.run(context())
        await pipeline.run(context())
        with pytest.raises(MiddlewareError, match="Rate limit"):
            await pipeline.run(context())

        now[0] = 1000.0
        result = await pipeline.run(context())
        assert result.completed

    @pytest.mark.asyncio
    async def test_conditional_and_specific_middleware(self):
        """Test combinators only run the inner middleware when they apply"""
        calls = []
        pipeline = MiddlewarePipeline([
            conditional_middleware(lambda ctx: ctx.target == "c", tracer("conditional", calls)),
            stage_specific_middleware(["a"], tracer("stage", calls)),
            stage_specific_middleware(["c"], tracer("stage-target", calls), match="target"),
            event_specific_middleware(["other"], tracer("event", calls)),
        ])

        await pipeline.run(context())

        assert calls == ["stage"]

    @pytest.mark.asyncio
    async def test_compose_middleware(self):
        """Test composed middleware keeps its inner order"""
        calls = []
        composed = compose_middleware(tracer("x", calls), tracer("y", calls))
        pipeline = MiddlewarePipeline([composed, tracer("z", calls)])

        result = await pipeline.run(context())

        assert composed.name == "composed-x-y"
        assert calls == ["x", "y", "z"]
        assert result.completed

    @pytest.mark.asyncio
    async def test_retry_middleware(self):
        """Test retry re-runs downstream middleware after a failure"""
        attempts = []

        async def flaky(ctx, next):
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("try again")
            await next()

        pipeline = MiddlewarePipeline([retry_middleware(max_attempts=3), Middleware("flaky", flaky)])

        result = await pipeline.run(context())

        assert len(attempts) == 3
        assert result.completed

    @pytest.mark.asyncio
    async def test_retry_gives_up(self):
        """Test the last error is raised once attempts run out"""
        async def always(ctx, next):
            raise ConnectionError("down")

        pipeline = MiddlewarePipeline([retry_middleware(max_attempts=2), Middleware("always", always)])

        with pytest.raises(MiddlewareError):
            await pipeline.run(context())
