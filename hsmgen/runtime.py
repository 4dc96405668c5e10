"""
Hierarchical dispatcher over MachineTables

This is the in-process counterpart of the generated C dispatcher: the
same ancestor-chain lookup, leaf exit, shallow history recording,
leaf descent and LCA-based entry sequence, driven by Python callables
bound to the hook names used in the .hsm file.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Union

from hsmgen.errors import ReentrantDispatch
from hsmgen.tables import NO_STATE, MachineTables, TransitionEntry

Action = Callable[["RuntimeContext"], None]
Guard = Callable[["RuntimeContext"], bool]


class HSMBindings:
    """Maps action and guard names to callables"""

    def __init__(self) -> None:
        self._actions: Dict[str, Action] = {}
        self._guards: Dict[str, Guard] = {}

    def register_action(self, name: str, fn: Action) -> None:
        """Register an entry/exit/transition action. Overwrites if already registered."""
        self._actions[name] = fn

    def register_guard(self, name: str, fn: Guard) -> None:
        """Register a guard predicate. Overwrites if already registered."""
        self._guards[name] = fn

    def has_action(self, name: str) -> bool:
        return name in self._actions

    def has_guard(self, name: str) -> bool:
        return name in self._guards

    def run_action(self, name: str, ctx: "RuntimeContext") -> None:
        """Run a named action; an empty name is a no-op"""
        if name:
            self._actions[name](ctx)

    def check_guard(self, name: str, ctx: "RuntimeContext") -> bool:
        """Evaluate a named guard; an empty name always passes"""
        if not name:
            return True
        return bool(self._guards[name](ctx))

    def missing(self, tables: MachineTables) -> List[str]:
        """Hook names referenced by the tables that have no binding"""
        missing = [n for n in tables.action_names() if n not in self._actions]
        missing += [n for n in tables.guard_names() if n not in self._guards]
        return missing


@dataclass
class RuntimeContext:
    """State of one machine instance; not safe for concurrent dispatch"""
    current_state: int = NO_STATE
    history: List[int] = field(default_factory=list)  # composite id -> last leaf, NO_STATE if unset
    user_data: Any = None
    dispatching: bool = False


class HSMDispatcher:
    """
    Executes the hierarchical dispatch contract for one compiled machine

    A single dispatcher can drive any number of contexts; each context
    accepts one dispatch at a time and rejects re-entry from its own
    actions or guards with ReentrantDispatch.
    """

    def __init__(self, tables: MachineTables, bindings: HSMBindings = None):
        self.tables = tables
        self.bindings = bindings if bindings is not None else HSMBindings()

        missing = self.bindings.missing(tables)
        if missing:
            raise ValueError(f"Unbound hooks for machine '{tables.name}': {', '.join(missing)}")

    # -- lifecycle -----------------------------------------------------

    def init(self, ctx: RuntimeContext, user_data: Any = None) -> None:
        """
        Reset the context and enter the initial leaf

        The machine entry action runs first, then the entry action of
        every state from the root down to the initial leaf.
        """
        self._begin(ctx)
        try:
            ctx.current_state = NO_STATE
            ctx.history = [NO_STATE] * len(self.tables.states)
            ctx.user_data = user_data

            self.bindings.run_action(self.tables.entry_action, ctx)
            leaf = self.tables.descend_to_leaf(self.tables.initial_id)
            self._enter(ctx, NO_STATE, leaf)
            ctx.current_state = leaf
        finally:
            ctx.dispatching = False

    def stop(self, ctx: RuntimeContext) -> None:
        """Exit the current leaf and run the machine exit action"""
        self._begin(ctx)
        try:
            if ctx.current_state != NO_STATE:
                self.bindings.run_action(self.tables.states[ctx.current_state].exit_action, ctx)
            self.bindings.run_action(self.tables.exit_action, ctx)
            ctx.current_state = NO_STATE
        finally:
            ctx.dispatching = False

    def dispatch(self, ctx: RuntimeContext, event: Union[int, str]) -> bool:
        """
        Deliver an event to the context

        Args:
            ctx: Initialized context
            event: Event id or event name

        Returns:
            True if a transition fired, False if the event was unhandled

        Raises:
            KeyError: Unknown event
            ReentrantDispatch: Called from inside an action or guard of ctx
        """
        event_id = self._event_id(event)
        self._begin(ctx)
        try:
            return self._dispatch(ctx, event_id)
        finally:
            ctx.dispatching = False

    # -- queries -------------------------------------------------------

    def is_in(self, ctx: RuntimeContext, state: Union[int, str]) -> bool:
        """True iff state is the current leaf or one of its ancestors"""
        state_id = self.tables.state_id(state) if isinstance(state, str) else state
        if ctx.current_state == NO_STATE:
            return False
        return state_id in self.tables.ancestors(ctx.current_state)

    def state_name(self, state_id: int) -> str:
        return self.tables.state_name(state_id)

    def state_path(self, state_id: int) -> str:
        return self.tables.state_path(state_id)

    def event_name(self, event_id: int) -> str:
        return self.tables.event_name(event_id)

    def get_parent(self, state_id: int) -> int:
        return self.tables.get_parent(state_id)

    # -- internals -----------------------------------------------------

    def _begin(self, ctx: RuntimeContext) -> None:
        if ctx.dispatching:
            raise ReentrantDispatch(f"Dispatch already in progress on machine '{self.tables.name}'")
        ctx.dispatching = True

    def _event_id(self, event: Union[int, str]) -> int:
        if isinstance(event, str):
            return self.tables.event_id(event)
        if not 0 <= event < len(self.tables.events):
            raise KeyError(event)
        return event

    def _dispatch(self, ctx: RuntimeContext, event_id: int) -> bool:
        current = ctx.current_state
        if current == NO_STATE:
            raise RuntimeError(f"Machine '{self.tables.name}' context is not initialized")

        # Bubble from the leaf toward the root, first declared handler wins
        for state_id in self.tables.ancestors(current):
            entry = self.tables.lookup(state_id, event_id)
            if entry is not None:
                break
        else:
            logging.debug(f"{self.tables.name}: '{self.tables.events[event_id]}' unhandled "
                          f"in '{self.tables.state_path(current)}'")
            return False

        # A rejecting guard stops the search; no further bubbling
        if not self.bindings.check_guard(entry.guard, ctx):
            return False

        leaf = self.tables.states[current]
        self.bindings.run_action(leaf.exit_action, ctx)

        if leaf.parent_id != NO_STATE and self.tables.states[leaf.parent_id].has_history:
            ctx.history[leaf.parent_id] = current

        self.bindings.run_action(entry.action, ctx)

        target = self._target_leaf(ctx, entry)
        self._enter(ctx, current, target)
        ctx.current_state = target

        logging.debug(f"{self.tables.name}: {self.tables.state_path(current)} "
                      f"--{self.tables.events[event_id]}--> {self.tables.state_path(target)}")
        return True

    def _target_leaf(self, ctx: RuntimeContext, entry: TransitionEntry) -> int:
        if entry.is_history_target:
            recorded = ctx.history[entry.target_id]
            if recorded != NO_STATE:
                return self.tables.descend_to_leaf(recorded)
        return self.tables.descend_to_leaf(entry.target_id)

    def _enter(self, ctx: RuntimeContext, from_leaf: int, to_leaf: int) -> None:
        for state_id in self.tables.entry_path(from_leaf, to_leaf):
            self.bindings.run_action(self.tables.states[state_id].entry_action, ctx)
