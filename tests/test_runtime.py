"""Tests for the hierarchical dispatcher: bubbling, exit/entry order, history."""
import pytest

from hsmgen import HSMBindings, HSMDispatcher, RuntimeContext, compile_text
from hsmgen.errors import ReentrantDispatch
from hsmgen.tables import NO_STATE

from conftest import DEEP, GUARDED, SCENARIO_A


def current_path(tables, ctx):
    return tables.state_path(ctx.current_state)


class TestScenarios:

    def test_ping_pong(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine(SCENARIO_A)
        assert current_path(tables, ctx) == "A"

        seen = []
        for _ in range(3):
            assert dispatcher.dispatch(ctx, "E")
            seen.append(current_path(tables, ctx))

        assert seen == ["B", "A", "B"]

    def test_shallow_history_recall(self, run_machine, device_spec):
        tables, dispatcher, ctx, recorder = run_machine(device_spec)
        parent = tables.state_id("Parent")
        assert current_path(tables, ctx) == "Parent.Child1"

        assert dispatcher.dispatch(ctx, "Event1")
        assert current_path(tables, ctx) == "Parent.Child2"

        assert dispatcher.dispatch(ctx, "Fault")
        assert current_path(tables, ctx) == "Error"
        assert ctx.history[parent] == tables.state_id("Parent.Child2")

        recorder.calls.clear()
        assert dispatcher.dispatch(ctx, "Reset")
        assert current_path(tables, ctx) == "Parent.Child2"
        # Parent is re-entered; Child2 has no entry action
        assert recorder.calls == ["parent_enter"]

    def test_history_falls_back_to_initial_child(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine("""
        machine H {
            initial: Idle
            state Idle { on Resume -> Work.history }
            state Work { initial: Step1; state Step1 { } state Step2 { } }
        }
        """)
        assert dispatcher.dispatch(ctx, "Resume")
        assert current_path(tables, ctx) == "Work.Step1"

    def test_replay_is_deterministic(self, device_spec):
        events = ["Event1", "Fault", "Reset", "Event2", "Fault", "Reset", "Bogus"]

        def replay():
            _, tables = compile_text(device_spec)
            bindings = HSMBindings()
            for name in tables.action_names():
                bindings.register_action(name, lambda ctx: None)
            dispatcher = HSMDispatcher(tables, bindings)
            ctx = RuntimeContext()
            dispatcher.init(ctx)
            for event in events:
                if event in tables.events:
                    dispatcher.dispatch(ctx, event)
            return ctx.current_state, list(ctx.history)

        assert replay() == replay()


class TestInit:

    def test_init_enters_root_to_leaf(self, run_machine):
        tables, _, ctx, recorder = run_machine(DEEP)
        assert current_path(tables, ctx) == "A.A1.A1x"
        assert recorder.calls == ["enter_a", "enter_a1", "enter_a1x"]

    def test_init_resets_history(self, run_machine, device_spec):
        tables, dispatcher, ctx, _ = run_machine(device_spec)
        dispatcher.dispatch(ctx, "Event1")
        dispatcher.dispatch(ctx, "Fault")

        dispatcher.init(ctx, user_data={"id": 7})

        assert ctx.history == [NO_STATE] * len(tables.states)
        assert ctx.user_data == {"id": 7}
        assert current_path(tables, ctx) == "Parent.Child1"

    def test_machine_entry_runs_first_and_exit_on_stop(self, run_machine):
        tables, dispatcher, ctx, recorder = run_machine(
            "machine M { entry: boot; exit: halt; state A { entry: in_a; exit: out_a } }"
        )
        assert recorder.calls == ["boot", "in_a"]

        dispatcher.stop(ctx)
        assert recorder.calls[2:] == ["out_a", "halt"]
        assert ctx.current_state == NO_STATE

    def test_dispatch_before_init(self, device_spec):
        _, tables = compile_text(device_spec)
        bindings = HSMBindings()
        for name in tables.action_names():
            bindings.register_action(name, lambda ctx: None)
        dispatcher = HSMDispatcher(tables, bindings)
        with pytest.raises(RuntimeError, match="not initialized"):
            dispatcher.dispatch(RuntimeContext(), "Fault")


class TestTransitionSequence:

    def test_exit_action_entry_order(self, run_machine):
        tables, dispatcher, ctx, recorder = run_machine(DEEP)
        recorder.calls.clear()

        assert dispatcher.dispatch(ctx, "Jump")

        # Only the leaf exits; every newly entered level runs its entry action
        assert recorder.calls == ["exit_a1x", "on_jump", "enter_b", "enter_b1", "enter_b1y"]
        assert current_path(tables, ctx) == "B.B1.B1y"

    def test_self_transition_exits_and_reenters(self, run_machine):
        tables, dispatcher, ctx, recorder = run_machine(
            "machine M { state S { entry: s_in; exit: s_out; on Tick -> S } }"
        )
        recorder.calls.clear()
        assert dispatcher.dispatch(ctx, "Tick")
        assert recorder.calls == ["s_out", "s_in"]
        assert current_path(tables, ctx) == "S"

    def test_composite_target_descends_to_leaf(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine(
            "machine M { state A { on Go -> B } state B { initial: B1; state B1 { initial: B2; state B2 { } } } }"
        )
        assert dispatcher.dispatch(ctx, "Go")
        assert current_path(tables, ctx) == "B.B1.B2"

    def test_history_recorded_only_for_history_parents(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine("""
        machine M {
            initial: P
            state P { initial: P1; state P1 { on Out -> Q } }
            state Q { }
        }
        """)
        dispatcher.dispatch(ctx, "Out")
        assert ctx.history[tables.state_id("P")] == NO_STATE

    def test_declared_history_is_recorded(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine("""
        machine M {
            initial: P
            state P { history; initial: P1; state P1 { on Out -> Q } }
            state Q { }
        }
        """)
        dispatcher.dispatch(ctx, "Out")
        assert ctx.history[tables.state_id("P")] == tables.state_id("P.P1")


class TestBubbling:

    def test_event_handled_by_ancestor(self, run_machine):
        tables, dispatcher, ctx, recorder = run_machine(GUARDED)
        recorder.calls.clear()
        assert dispatcher.dispatch(ctx, "Up")
        assert current_path(tables, ctx) == "Other"
        assert recorder.calls == ["climb"]

    def test_passing_guard_fires_innermost(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine(GUARDED, guards={"allowed": True})
        assert dispatcher.dispatch(ctx, "Go")
        assert current_path(tables, ctx) == "Outer.Sibling"

    def test_rejecting_guard_does_not_bubble(self, run_machine):
        tables, dispatcher, ctx, recorder = run_machine(GUARDED, guards={"allowed": False})
        recorder.calls.clear()
        assert not dispatcher.dispatch(ctx, "Go")
        assert current_path(tables, ctx) == "Outer.Inner"
        assert recorder.calls == []

    def test_unhandled_event(self, run_machine, device_spec):
        tables, dispatcher, ctx, _ = run_machine(device_spec)
        assert not dispatcher.dispatch(ctx, "Reset")
        assert current_path(tables, ctx) == "Parent.Child1"

    def test_dispatch_by_event_id(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine(SCENARIO_A)
        assert dispatcher.dispatch(ctx, tables.event_id("E"))
        assert current_path(tables, ctx) == "B"

    def test_unknown_event(self, run_machine):
        _, dispatcher, ctx, _ = run_machine(SCENARIO_A)
        with pytest.raises(KeyError):
            dispatcher.dispatch(ctx, "Nope")
        with pytest.raises(KeyError):
            dispatcher.dispatch(ctx, 5)


class TestQueries:

    def test_is_in_current_and_ancestors(self, run_machine, device_spec):
        tables, dispatcher, ctx, _ = run_machine(device_spec)
        dispatcher.dispatch(ctx, "Event1")

        assert dispatcher.is_in(ctx, "Parent.Child2")
        assert dispatcher.is_in(ctx, "Parent")
        assert dispatcher.is_in(ctx, tables.state_id("Parent"))
        assert not dispatcher.is_in(ctx, "Parent.Child1")
        assert not dispatcher.is_in(ctx, "Error")

    def test_name_lookups(self, run_machine, device_spec):
        _, dispatcher, _, _ = run_machine(device_spec)
        assert dispatcher.state_name(1) == "Child1"
        assert dispatcher.state_path(1) == "Parent.Child1"
        assert dispatcher.event_name(3) == "Reset"
        assert dispatcher.get_parent(1) == 0
        assert dispatcher.get_parent(0) == NO_STATE


class TestBindings:

    def test_unbound_hooks_rejected(self, device_spec):
        _, tables = compile_text(device_spec)
        with pytest.raises(ValueError, match="parent_enter"):
            HSMDispatcher(tables, HSMBindings())

    def test_missing_lists_actions_and_guards(self):
        _, tables = compile_text("machine M { state A { entry: go; on E [ok] -> A } }")
        bindings = HSMBindings()
        bindings.register_action("go", lambda ctx: None)
        assert bindings.missing(tables) == ["ok"]
        bindings.register_guard("ok", lambda ctx: True)
        assert bindings.missing(tables) == []
        assert bindings.has_action("go")
        assert bindings.has_guard("ok")

    def test_actions_see_user_data(self):
        _, tables = compile_text("machine M { state A { on E -> A / bump } }")
        bindings = HSMBindings()
        bindings.register_action("bump", lambda ctx: ctx.user_data.append("bump"))
        dispatcher = HSMDispatcher(tables, bindings)
        ctx = RuntimeContext()
        dispatcher.init(ctx, user_data=[])
        dispatcher.dispatch(ctx, "E")
        assert ctx.user_data == ["bump"]


class TestReentrancy:
    """An action or guard must not dispatch on its own context."""

    def _build(self, text, hook, kind):
        _, tables = compile_text(text)
        bindings = HSMBindings()
        holder = {}

        def reenter(ctx):
            holder["dispatcher"].dispatch(ctx, "E")
            return True

        if kind == "action":
            bindings.register_action(hook, reenter)
        else:
            bindings.register_guard(hook, reenter)
        holder["dispatcher"] = HSMDispatcher(tables, bindings)
        return tables, holder["dispatcher"]

    def test_reentry_from_action(self):
        tables, dispatcher = self._build("machine M { state A { on E -> B / act } state B { } }", "act", "action")
        ctx = RuntimeContext()
        dispatcher.init(ctx)

        with pytest.raises(ReentrantDispatch):
            dispatcher.dispatch(ctx, "E")

        assert not ctx.dispatching
        assert tables.state_path(ctx.current_state) == "A"

    def test_reentry_from_guard(self):
        _, dispatcher = self._build("machine M { state A { on E [check] -> B } state B { } }", "check", "guard")
        ctx = RuntimeContext()
        dispatcher.init(ctx)
        with pytest.raises(ReentrantDispatch):
            dispatcher.dispatch(ctx, "E")

    def test_reentry_from_entry_action_during_init(self):
        _, tables = compile_text("machine M { state A { entry: start; on E -> A } }")
        bindings = HSMBindings()
        holder = {}
        bindings.register_action("start", lambda ctx: holder["dispatcher"].dispatch(ctx, "E"))
        holder["dispatcher"] = HSMDispatcher(tables, bindings)

        with pytest.raises(ReentrantDispatch):
            holder["dispatcher"].init(RuntimeContext())

    def test_separate_contexts_are_independent(self, run_machine):
        tables, dispatcher, ctx, _ = run_machine(SCENARIO_A)
        other = RuntimeContext()
        dispatcher.init(other)

        dispatcher.dispatch(ctx, "E")

        assert tables.state_path(ctx.current_state) == "B"
        assert tables.state_path(other.current_state) == "A"
