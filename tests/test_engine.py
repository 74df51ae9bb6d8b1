"""Tests for the stage flow engine"""

import asyncio

import pytest

from stageflow import (
    ConfigurationError,
    HookPlugin,
    HookType,
    Middleware,
    PluginError,
    StageDefinition,
    StageFlowConfig,
    StageFlowEngine,
    TransitionDefinition,
    TransitionError,
)
from tests.conftest import wizard_config


def recording_plugin(name, calls, dependencies=None):
    """Plugin that appends (plugin, hook, stage) to calls for every hook"""
    def hook(hook_type):
        def record(context):
            stage = getattr(context, "current", None) or f"{context.source}->{context.target}"
            calls.append((name, hook_type.value, stage))
        return record

    return HookPlugin(
        name,
        hooks={h: hook(h) for h in HookType},
        on_install=lambda engine: calls.append((name, "install", None)),
        on_uninstall=lambda engine: calls.append((name, "uninstall", None)),
        dependencies=dependencies,
    )


class TestLifecycle:
    """Tests for start/stop/reset"""

    @pytest.mark.asyncio
    async def test_start_enters_initial_stage_once(self, wizard):
        """Test start fires exactly one on_stage_enter for the initial stage"""
        calls = []
        wizard.plugins = [recording_plugin("rec", calls)]
        engine = StageFlowEngine(wizard)

        await engine.start()

        assert engine.get_current_stage() == "input"
        enters = [c for c in calls if c[1] == "on_stage_enter"]
        assert enters == [("rec", "on_stage_enter", "input")]
        assert len(engine.get_history()) == 1

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, wizard):
        """Test a second start does not re-enter the stage"""
        calls = []
        wizard.plugins = [recording_plugin("rec", calls)]
        engine = StageFlowEngine(wizard)

        await engine.start()
        await engine.start()

        assert len([c for c in calls if c[1] == "on_stage_enter"]) == 1
        assert len([c for c in calls if c[1] == "install"]) == 1

    @pytest.mark.asyncio
    async def test_send_before_start_raises(self, wizard):
        """Test transitions require a started engine"""
        engine = StageFlowEngine(wizard)

        with pytest.raises(TransitionError):
            await engine.send("submit")

    @pytest.mark.asyncio
    async def test_stop_runs_exit_and_uninstall(self, wizard):
        """Test stop fires exit hooks then uninstall hooks"""
        calls = []
        wizard.plugins = [recording_plugin("rec", calls)]
        engine = StageFlowEngine(wizard)
        await engine.start()
        calls.clear()

        await engine.stop()

        assert calls == [("rec", "on_stage_exit", "input"), ("rec", "uninstall", None)]
        assert not engine.is_started
        assert engine.get_installed_plugins() == ["rec"]

    @pytest.mark.asyncio
    async def test_reset_returns_to_initial(self, wizard):
        """Test reset goes back to the initial stage with fresh history"""
        engine = StageFlowEngine(wizard)
        await engine.start()
        await engine.send("submit")
        await engine.send("approve")

        await engine.reset()

        assert engine.get_current_stage() == "input"
        assert [h.stage for h in engine.get_history()] == ["input"]
        assert engine.is_started


class TestSend:
    """Tests for event-driven transitions"""

    @pytest.mark.asyncio
    async def test_send_moves_to_target(self, wizard):
        """Test a matching event commits exactly one transition"""
        engine = StageFlowEngine(wizard)
        await engine.start()

        committed = await engine.send("submit")

        assert committed is True
        assert engine.get_current_stage() == "validation"
        assert [h.stage for h in engine.get_history()] == ["input", "validation"]

    @pytest.mark.asyncio
    async def test_unmatched_event_is_noop(self, wizard):
        """Test an unknown event leaves state unchanged without raising"""
        engine = StageFlowEngine(wizard)
        await engine.start()

        committed = await engine.send("approve")

        assert committed is False
        assert engine.get_current_stage() == "input"
        assert len(engine.get_history()) == 1

    @pytest.mark.asyncio
    async def test_send_data_and_default_data(self, wizard):
        """Test payload passed to send wins over the stage default"""
        engine = StageFlowEngine(wizard)
        await engine.start()

        await engine.send("submit", {"value": "abc"})
        assert engine.get_current_data() == {"value": "abc"}

        await engine.send("approve")
        assert engine.get_current_data() == {"complete": True}

    @pytest.mark.asyncio
    async def test_first_passing_condition_wins(self):
        """Test conditions are evaluated in declaration order"""
        config = StageFlowConfig(
            initial="start",
            stages=[
                StageDefinition(
                    name="start",
                    data={"age": 20},
                    transitions=[
                        TransitionDefinition(target="minor", event="check", condition=lambda ctx: ctx.data["age"] < 18),
                        TransitionDefinition(target="adult", event="check", condition=lambda ctx: ctx.data["age"] >= 18),
                        TransitionDefinition(target="minor", event="check"),
                    ],
                ),
                StageDefinition(name="minor"),
                StageDefinition(name="adult"),
            ],
        )
        engine = StageFlowEngine(config)
        await engine.start()

        await engine.send("check")

        assert engine.get_current_stage() == "adult"

    @pytest.mark.asyncio
    async def test_async_condition(self):
        """Test asynchronous conditions are awaited"""
        async def ready(ctx):
            await asyncio.sleep(0)
            return False

        config = StageFlowConfig(
            initial="a",
            stages=[
                StageDefinition(name="a", transitions=[TransitionDefinition(target="b", event="go", condition=ready)]),
                StageDefinition(name="b"),
            ],
        )
        engine = StageFlowEngine(config)
        await engine.start()

        assert await engine.send("go") is False
        assert engine.get_current_stage() == "a"

    @pytest.mark.asyncio
    async def test_condition_error_aborts(self):
        """Test a raising condition propagates as TransitionError"""
        def broken(ctx):
            raise ValueError("boom")

        config = StageFlowConfig(
            initial="a",
            stages=[
                StageDefinition(name="a", transitions=[TransitionDefinition(target="b", event="go", condition=broken)]),
                StageDefinition(name="b"),
            ],
        )
        engine = StageFlowEngine(config)
        await engine.start()

        with pytest.raises(TransitionError):
            await engine.send("go")
        assert engine.get_current_stage() == "a"
        assert not engine.is_transitioning


class TestGoTo:
    """Tests for direct navigation"""

    @pytest.mark.asyncio
    async def test_go_to_any_stage(self, wizard):
        """Test go_to bypasses event matching"""
        engine = StageFlowEngine(wizard)
        await engine.start()

        assert await engine.go_to("done") is True
        assert engine.get_current_stage() == "done"

    @pytest.mark.asyncio
    async def test_go_to_unknown_stage(self, wizard):
        """Test go_to rejects undeclared stages"""
        engine = StageFlowEngine(wizard)
        await engine.start()

        with pytest.raises(TransitionError):
            await engine.go_to("nowhere")

    @pytest.mark.asyncio
    async def test_go_to_passes_through_middleware(self, wizard):
        """Test go_to can still be cancelled by middleware"""
        engine = StageFlowEngine(wizard)
        engine.add_middleware(Middleware("block", lambda ctx, next: ctx.cancel()))
        await engine.start()

        assert await engine.go_to("done") is False
        assert engine.get_current_stage() == "input"

    @pytest.mark.asyncio
    async def test_go_to_uses_declared_transition_middleware(self, wizard):
        """Test go_to runs scoped middleware of a declared transition"""
        seen = []

        async def scoped(ctx, next):
            seen.append(ctx.event)
            await next()

        wizard.stages[0].transitions[0].middleware = [Middleware("scoped", scoped)]
        engine = StageFlowEngine(wizard)
        await engine.start()

        await engine.go_to("validation")
        await engine.go_to("done")

        assert seen == ["submit"]


class TestHooks:
    """Tests for plugin hook ordering and failure policy"""

    @pytest.mark.asyncio
    async def test_hook_order(self, wizard):
        """Test hooks fire in the documented order"""
        calls = []
        wizard.plugins = [recording_plugin("rec", calls)]
        engine = StageFlowEngine(wizard)
        engine.subscribe(lambda stage, data: calls.append(("subscriber", "notify", stage)))
        await engine.start()
        calls.clear()

        await engine.send("submit")

        order = [c[1] for c in calls]
        assert order == [
            "before_transition",
            "on_stage_exit",
            "on_stage_enter",
            "after_transition",
            "notify",
        ]

    @pytest.mark.asyncio
    async def test_cancel_skips_after_hooks(self, wizard):
        """Test cancelled transitions fire no enter/after hooks"""
        calls = []
        wizard.plugins = [recording_plugin("rec", calls)]
        engine = StageFlowEngine(wizard)
        engine.add_middleware(Middleware("cancel", lambda ctx, next: ctx.cancel()))
        await engine.start()
        calls.clear()
        before = engine.get_state()

        await engine.send("submit")

        assert calls == []
        assert engine.get_current_stage() == before.current
        assert engine.get_current_data() == before.data

    @pytest.mark.asyncio
    async def test_enter_hook_failure_rolls_back(self, wizard):
        """Test a failing on_stage_enter restores the previous stage"""
        def fail_on_validation(ctx):
            if ctx.current == "validation":
                raise RuntimeError("enter failed")

        wizard.plugins = [HookPlugin("fragile", hooks={HookType.ON_STAGE_ENTER: fail_on_validation})]
        engine = StageFlowEngine(wizard)
        await engine.start()

        with pytest.raises(PluginError):
            await engine.send("submit")

        assert engine.get_current_stage() == "input"
        assert [h.stage for h in engine.get_history()] == ["input"]
        assert not engine.is_transitioning

    @pytest.mark.asyncio
    async def test_exit_hook_failure_leaves_state(self, wizard):
        """Test a failing stage on_exit aborts before commit"""
        def refuse(ctx):
            raise RuntimeError("cannot leave")

        wizard.stages[0].on_exit = refuse
        engine = StageFlowEngine(wizard)
        await engine.start()

        with pytest.raises(TransitionError):
            await engine.send("submit")
        assert engine.get_current_stage() == "input"

    @pytest.mark.asyncio
    async def test_stage_callbacks(self, wizard):
        """Test stage on_enter/on_exit receive the stage context"""
        seen = []
        wizard.stages[0].on_exit = lambda ctx: seen.append(("exit", ctx.current))
        wizard.stages[1].on_enter = lambda ctx: seen.append(("enter", ctx.current))
        engine = StageFlowEngine(wizard)
        await engine.start()

        await engine.send("submit")

        assert seen == [("exit", "input"), ("enter", "validation")]

    @pytest.mark.asyncio
    async def test_reentrant_send_from_hook_is_rejected(self, wizard):
        """Test a hook awaiting send inside a transition gets TransitionError"""
        async def chain(ctx):
            if ctx.current == "validation":
                await ctx.send("approve")

        wizard.plugins = [HookPlugin("chain", hooks={HookType.ON_STAGE_ENTER: chain})]
        engine = StageFlowEngine(wizard)
        await engine.start()

        with pytest.raises(TransitionError):
            await engine.send("submit")
        assert engine.get_current_stage() == "input"


class TestConcurrency:
    """Tests for the single-flight transition gate"""

    @pytest.mark.asyncio
    async def test_concurrent_sends_are_queued(self, wizard):
        """Test overlapping sends run one after another in order"""
        active = []
        overlaps = []

        async def slow(ctx, next):
            if active:
                overlaps.append(ctx.event)
            active.append(ctx.event)
            await asyncio.sleep(0.01)
            await next()
            active.remove(ctx.event)

        engine = StageFlowEngine(wizard)
        engine.add_middleware(Middleware("slow", slow))
        await engine.start()

        results = await asyncio.gather(engine.send("submit"), engine.send("approve"))

        assert results == [True, True]
        assert overlaps == []
        assert engine.get_current_stage() == "done"

    @pytest.mark.asyncio
    async def test_set_stage_data_waits_for_transition(self, wizard):
        """Test data written during a transition is applied after its commit"""
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold(ctx, next):
            entered.set()
            await release.wait()
            await next()

        engine = StageFlowEngine(wizard)
        engine.add_middleware(Middleware("hold", hold))
        await engine.start()

        transition = asyncio.ensure_future(engine.send("submit"))
        await entered.wait()
        update = asyncio.ensure_future(engine.set_stage_data({"value": "late"}))
        await asyncio.sleep(0)
        assert engine.get_current_data() == {"value": ""}

        release.set()
        await asyncio.gather(transition, update)

        assert engine.get_current_stage() == "validation"
        assert engine.get_current_data() == {"value": "late"}

    @pytest.mark.asyncio
    async def test_transitioning_flag(self, wizard):
        """Test the flag is set only during a pipeline run"""
        observed = []

        async def spy(ctx, next):
            observed.append(engine.is_transitioning)
            await next()

        engine = StageFlowEngine(wizard)
        engine.add_middleware(Middleware("spy", spy))
        await engine.start()

        await engine.send("submit")

        assert observed == [True]
        assert engine.is_transitioning is False


class TestSubscribers:
    """Tests for subscriber notification"""

    @pytest.mark.asyncio
    async def test_subscribers_in_order_and_unsubscribe(self, wizard):
        """Test subscribers are notified in registration order"""
        calls = []
        engine = StageFlowEngine(wizard)
        engine.subscribe(lambda stage, data: calls.append(("first", stage)))
        unsubscribe = engine.subscribe(lambda stage, data: calls.append(("second", stage)))
        await engine.start()
        calls.clear()

        await engine.send("submit")
        unsubscribe()
        await engine.send("approve")

        assert calls == [("first", "validation"), ("second", "validation"), ("first", "done")]

    @pytest.mark.asyncio
    async def test_subscriber_error_does_not_abort(self, wizard):
        """Test a failing subscriber is logged, not raised"""
        def broken(stage, data):
            raise RuntimeError("subscriber failed")

        engine = StageFlowEngine(wizard)
        engine.subscribe(broken)
        await engine.start()

        assert await engine.send("submit") is True
        assert engine.get_current_stage() == "validation"

    @pytest.mark.asyncio
    async def test_set_stage_data_notifies(self, wizard):
        """Test set_stage_data updates data without a transition"""
        calls = []
        engine = StageFlowEngine(wizard)
        await engine.start()
        engine.subscribe(lambda stage, data: calls.append((stage, data)))

        await engine.set_stage_data({"value": "typed"})

        assert calls == [("input", {"value": "typed"})]
        assert engine.get_current_stage() == "input"
        assert len(engine.get_history()) == 1


class TestQueries:
    """Tests for the query surface"""

    @pytest.mark.asyncio
    async def test_effects(self, wizard):
        """Test effect references are returned untouched"""
        engine = StageFlowEngine(wizard)
        await engine.start()

        assert engine.get_current_stage_effect() == "fade"
        assert engine.get_stage_effect("validation") is None
        assert engine.get_stage_effect("unknown") is None

    @pytest.mark.asyncio
    async def test_history_limit(self):
        """Test history keeps only the newest entries when capped"""
        engine = StageFlowEngine(wizard_config(history_limit=2))
        await engine.start()

        await engine.send("submit")
        await engine.send("approve")

        assert [h.stage for h in engine.get_history()] == ["validation", "done"]

    @pytest.mark.asyncio
    async def test_statistics(self, wizard):
        """Test statistics count committed and unmatched transitions"""
        engine = StageFlowEngine(wizard)
        await engine.start()
        await engine.send("submit")
        await engine.send("nope")

        stats = engine.get_statistics()
        assert stats["transitions_committed"] == 1
        assert stats["events_unmatched"] == 1
        assert stats["current_stage"] == "validation"

    def test_invalid_config_raises(self):
        """Test construction validates the configuration"""
        config = StageFlowConfig(
            initial="missing",
            stages=[StageDefinition(name="a")],
        )
        with pytest.raises(ConfigurationError):
            StageFlowEngine(config)
