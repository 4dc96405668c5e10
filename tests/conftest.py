"""Shared fixtures for hsmgen tests."""
from pathlib import Path

import pytest

from hsmgen import HSMBindings, HSMDispatcher, RuntimeContext, compile_text

DATA_DIR = Path(__file__).parent / "data"

SCENARIO_A = "machine M { initial: A; state A { on E -> B } state B { on E -> A } }"

DEEP = """
machine Deep {
    initial: A
    state A {
        initial: A1
        entry: enter_a
        exit: exit_a
        state A1 {
            initial: A1x
            entry: enter_a1
            state A1x { entry: enter_a1x; exit: exit_a1x; on Jump -> B.B1.B1y / on_jump }
            state A1y { }
        }
    }
    state B {
        initial: B1
        entry: enter_b
        state B1 {
            initial: B1x
            entry: enter_b1
            state B1x { entry: enter_b1x }
            state B1y { entry: enter_b1y }
        }
    }
}
"""

GUARDED = """
machine G {
    initial: Outer.Inner
    state Outer {
        initial: Inner
        on Go -> Other
        on Up -> Other / climb
        state Inner { on Go [allowed] -> Sibling }
        state Sibling { }
    }
    state Other { }
}
"""


class Recorder:
    """Binds every hook of a machine to a callable that logs its name."""

    def __init__(self, tables, guards=None):
        self.calls = []
        self.bindings = HSMBindings()
        for name in tables.action_names():
            self.bindings.register_action(name, self._make_action(name))
        for name in tables.guard_names():
            value = (guards or {}).get(name, True)
            self.bindings.register_guard(name, lambda ctx, v=value: v)

    def _make_action(self, name):
        def action(ctx):
            self.calls.append(name)
        return action


@pytest.fixture
def device_spec():
    return (DATA_DIR / "device.hsm").read_text(encoding="utf-8")


@pytest.fixture
def device_path():
    return DATA_DIR / "device.hsm"


@pytest.fixture
def run_machine():
    """Compile text and return (tables, dispatcher, ctx, recorder), already initialized."""

    def _run(text, guards=None):
        _, tables = compile_text(text, "test.hsm")
        recorder = Recorder(tables, guards)
        dispatcher = HSMDispatcher(tables, recorder.bindings)
        ctx = RuntimeContext()
        dispatcher.init(ctx)
        return tables, dispatcher, ctx, recorder

    return _run
