"""
Enumerator / Table Builder

Assigns dense ids to states (declaration order) and events (first-seen
order) and builds the per-state metadata table plus the sparse
(state, event) transition table consumed by the dispatcher.

Ids are a pure function of declaration order, so regenerating an
unchanged spec yields identical ids.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from hsmgen.errors import HSMError
from hsmgen.hsm_parser import MachineSpec

NO_STATE = -1


@dataclass(frozen=True)
class StateInfo:
    id: int
    name: str
    full_path: str
    parent_id: int  # NO_STATE for root states
    depth: int
    initial_child_id: int  # NO_STATE if none
    has_history: bool
    entry_action: str = ""
    exit_action: str = ""


@dataclass(frozen=True)
class TransitionEntry:
    source_id: int
    event_id: int
    target_id: int
    is_history_target: bool = False
    guard: str = ""
    action: str = ""


@dataclass
class MachineTables:
    """Flattened, id-based view of a resolved machine"""
    name: str
    states: List[StateInfo]
    events: List[str]
    transitions: Dict[Tuple[int, int], TransitionEntry]
    initial_id: int
    entry_action: str = ""
    exit_action: str = ""

    def __post_init__(self):
        self._state_ids = {s.full_path: s.id for s in self.states}
        self._event_ids = {name: i for i, name in enumerate(self.events)}
        self._children: Dict[int, List[int]] = {s.id: [] for s in self.states}
        for s in self.states:
            if s.parent_id != NO_STATE:
                self._children[s.parent_id].append(s.id)

    # -- lookups -------------------------------------------------------

    def state_id(self, full_path: str) -> int:
        """Raises KeyError for an unknown path"""
        return self._state_ids[full_path]

    def event_id(self, name: str) -> int:
        """Raises KeyError for an unknown event"""
        return self._event_ids[name]

    def state_name(self, state_id: int) -> str:
        if 0 <= state_id < len(self.states):
            return self.states[state_id].name
        return "UNKNOWN"

    def state_path(self, state_id: int) -> str:
        if 0 <= state_id < len(self.states):
            return self.states[state_id].full_path
        return "UNKNOWN"

    def event_name(self, event_id: int) -> str:
        if 0 <= event_id < len(self.events):
            return self.events[event_id]
        return "UNKNOWN"

    def get_parent(self, state_id: int) -> int:
        if 0 <= state_id < len(self.states):
            return self.states[state_id].parent_id
        return NO_STATE

    def lookup(self, state_id: int, event_id: int) -> Optional[TransitionEntry]:
        """Transition declared exactly at (state, event), None if unhandled at this level"""
        return self.transitions.get((state_id, event_id))

    # -- hierarchy -----------------------------------------------------

    def children(self, state_id: int) -> List[int]:
        return list(self._children[state_id])

    def is_leaf(self, state_id: int) -> bool:
        return not self._children[state_id]

    def ancestors(self, state_id: int) -> List[int]:
        """Chain from state_id (inclusive) up to its root"""
        chain = []
        current = state_id
        while current != NO_STATE:
            chain.append(current)
            current = self.states[current].parent_id
        return chain

    def descend_to_leaf(self, state_id: int) -> int:
        """Follow initial children down to a leaf"""
        current = state_id
        while self.states[current].initial_child_id != NO_STATE:
            current = self.states[current].initial_child_id
        return current

    def entry_path(self, from_id: int, to_id: int) -> List[int]:
        """
        States entered when moving from leaf `from_id` to leaf `to_id`

        Returns the states strictly below the lowest common ancestor down
        to `to_id`, root-to-leaf. A self-transition re-enters the leaf.
        """
        if from_id == to_id:
            return [to_id]
        if from_id == NO_STATE:
            return list(reversed(self.ancestors(to_id)))
        common = set(self.ancestors(from_id))
        path = []
        for state_id in self.ancestors(to_id):
            if state_id in common:
                break
            path.append(state_id)
        return list(reversed(path))

    # -- hooks ---------------------------------------------------------

    def action_names(self) -> List[str]:
        """Distinct entry/exit/transition action names, first-referenced order"""
        names = [self.entry_action, self.exit_action]
        for s in self.states:
            names += [s.entry_action, s.exit_action]
        names += [t.action for t in self.transitions.values()]
        return _distinct(names)

    def guard_names(self) -> List[str]:
        return _distinct(t.guard for t in self.transitions.values())


def _distinct(names) -> List[str]:
    return list(dict.fromkeys(n for n in names if n))


class TableBuilder:
    """Build MachineTables from a resolved MachineSpec"""

    def __init__(self, model: MachineSpec):
        if not model.resolved:
            raise HSMError(f"Machine '{model.name}' must be resolved before building tables")
        self.model = model

    def build(self) -> MachineTables:
        ids = {path: i for i, path in enumerate(self.model.states)}

        states = []
        for path, node in self.model.states.items():
            states.append(StateInfo(
                id=ids[path],
                name=node.name,
                full_path=path,
                parent_id=ids[node.parent] if node.parent is not None else NO_STATE,
                depth=node.depth,
                initial_child_id=ids[node.initial_child] if node.initial_child else NO_STATE,
                has_history=node.has_history,
                entry_action=node.entry_action,
                exit_action=node.exit_action,
            ))

        events = self.model.events.names()
        event_ids = {name: i for i, name in enumerate(events)}

        transitions = {}
        for t in self.model.transitions:
            entry = TransitionEntry(
                source_id=ids[t.source],
                event_id=event_ids[t.event],
                target_id=ids[t.target],
                is_history_target=t.is_history_target,
                guard=t.guard,
                action=t.action,
            )
            transitions[(entry.source_id, entry.event_id)] = entry

        return MachineTables(
            name=self.model.name,
            states=states,
            events=events,
            transitions=transitions,
            initial_id=ids[self.model.initial_state],
            entry_action=self.model.entry_action,
            exit_action=self.model.exit_action,
        )
