#!/usr/bin/env python3
"""
HSM Specification Parser

Parses .hsm machine specifications and extracts the hierarchical state
machine model (state tree, raw transitions, event registry) for
resolution, table building and code generation.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from hsmgen.config import Limits, get_limits
from hsmgen.errors import CapacityExceeded, HSMIOError, ParseError
from hsmgen.tokens import EOF, IDENT, KEYWORDS, Token, tokenize

# Separator of full paths and suffix of history references
PATH_SEPARATOR = '.'
HISTORY_SUFFIX = '.history'

_NAME_KINDS = frozenset([IDENT, *KEYWORDS.values()])


@dataclass
class StateNode:
    """A `state NAME { ... }` block"""
    name: str
    full_path: str
    parent: Optional[str] = None  # parent full path, None for root states
    depth: int = 0
    entry_action: str = ""
    exit_action: str = ""
    initial: str = ""  # initial child as written
    initial_child: Optional[str] = None  # resolved full path of the initial child
    history_declared: bool = False  # explicit `history` line
    history_targeted: bool = False  # some transition targets <path>.history
    children: List[str] = field(default_factory=list)  # direct children, declaration order
    ancestors: List[str] = field(default_factory=list)  # root -> this state, filled by the resolver
    document_order: int = 0
    line: int = 0

    @property
    def has_history(self) -> bool:
        return self.history_declared or self.history_targeted

    @property
    def is_composite(self) -> bool:
        return bool(self.children)


@dataclass
class Transition:
    """An `on EVENT [guard] -> TARGET / action` line"""
    event: str
    source: str  # full path of the declaring state
    raw_target: str  # target as written
    guard: str = ""
    action: str = ""
    target: str = ""  # resolved full path (of the history owner for history targets)
    is_history_target: bool = False
    line: int = 0


class EventRegistry:
    """Event names in first-seen order, each with a dense id"""

    def __init__(self, limit: Optional[int] = None):
        self._ids: Dict[str, int] = {}
        self._limit = limit

    def add(self, name: str) -> int:
        """Register an event name (no-op if known) and return its id"""
        if name in self._ids:
            return self._ids[name]
        if self._limit is not None and len(self._ids) >= self._limit:
            raise CapacityExceeded('events', self._limit, f"cannot register '{name}'")
        self._ids[name] = len(self._ids)
        return self._ids[name]

    def id_of(self, name: str) -> int:
        return self._ids[name]

    def names(self) -> List[str]:
        return list(self._ids)

    def __contains__(self, name) -> bool:
        return name in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class MachineSpec:
    """Parsed machine: the aggregate threaded through resolver and table builder"""
    name: str
    filename: str = "<string>"
    initial: str = ""  # machine initial as written
    initial_state: str = ""  # resolved full path, filled by the resolver
    entry_action: str = ""
    exit_action: str = ""
    states: Dict[str, StateNode] = field(default_factory=dict)  # full path -> node, declaration order
    transitions: List[Transition] = field(default_factory=list)
    events: EventRegistry = field(default_factory=EventRegistry)
    resolved: bool = False
    line: int = 0

    def state_list(self) -> List[StateNode]:
        return list(self.states.values())

    def root_states(self) -> List[StateNode]:
        return [s for s in self.states.values() if s.parent is None]


class HSMParser:
    """
    Recursive-descent parser for .hsm specifications

    Grammar (informal):
        machine NAME { machine_item* }
        machine_item = initial: PATH | entry: HOOK | exit: HOOK | state
        state        = state NAME { state_item* }
        state_item   = initial: PATH | entry: HOOK | exit: HOOK | history
                     | on EVENT [ '[' HOOK ']' ] -> TARGET [ / HOOK ] | state
        HOOK         = NAME [ '(' ')' ]

    `;` may separate any two items. Every capacity in Limits is enforced.
    """

    def __init__(self, limits: Optional[Limits] = None):
        self.limits = limits or get_limits()
        self.model: Optional[MachineSpec] = None
        self.filename = "<string>"
        self._tokens: List[Token] = []
        self._pos = 0
        self._open_states: List[StateNode] = []
        self._transition_index: Dict[Tuple[str, str], int] = {}

    def parse_file(self, spec_path) -> MachineSpec:
        """
        Parse a specification file and return the raw (unresolved) model

        Args:
            spec_path: Path to the .hsm file

        Returns:
            MachineSpec with states, raw transitions and events

        Raises:
            HSMIOError: If the file cannot be read
            ParseError, CapacityExceeded: On malformed or oversized input
        """
        try:
            data = Path(spec_path).read_bytes()
        except OSError as e:
            raise HSMIOError(spec_path, e) from e

        try:
            text = data.decode('utf-8')
        except UnicodeDecodeError as e:
            line = data.count(b'\n', 0, e.start) + 1
            raise ParseError(f"invalid UTF-8: {e.reason}", str(spec_path), line) from e

        return self.parse_text(text, str(spec_path))

    def parse_text(self, text: str, filename: str = "<string>") -> MachineSpec:
        """Parse specification text (see parse_file)"""
        self.filename = filename
        self._tokens = list(tokenize(text, filename))
        self._pos = 0
        self._open_states = []
        self._transition_index = {}
        self.model = None

        self._parse_machine()

        logging.debug(
            f"Parsed machine '{self.model.name}': {len(self.model.states)} states, "
            f"{len(self.model.events)} events, {len(self.model.transitions)} transitions"
        )
        return self.model

    # -- token stream --------------------------------------------------

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        tok = self._tokens[self._pos]
        if tok.kind != EOF:
            self._pos += 1
        return tok

    def _error(self, message: str, line: int) -> ParseError:
        return ParseError(message, self.filename, line)

    def _expect(self, kind: str, what: str) -> Token:
        tok = self._peek()
        if tok.kind != kind:
            raise self._error(f"Expected {what}, got {tok.describe()}", tok.line)
        return self._advance()

    def _expect_name(self, what: str, dotted: bool = False) -> Token:
        """Accept an identifier; keywords are accepted in name positions"""
        tok = self._peek()
        if tok.kind not in _NAME_KINDS:
            raise self._error(f"Expected {what}, got {tok.describe()}", tok.line)
        if not dotted and PATH_SEPARATOR in tok.value:
            raise self._error(f"{what.capitalize()} must not contain '.': '{tok.value}'", tok.line)
        limit = self.limits.max_path if dotted else self.limits.max_name
        if len(tok.value) > limit:
            kind = 'characters in path' if dotted else 'characters in name'
            raise CapacityExceeded(kind, limit, f"'{tok.value}' at {self.filename}:{tok.line}")
        return self._advance()

    def _skip_separators(self):
        while self._peek().kind == 'SEMI':
            self._advance()

    # -- grammar -------------------------------------------------------

    def _parse_machine(self):
        self._skip_separators()
        machine_tok = self._expect('MACHINE', "'machine'")
        name_tok = self._expect_name("machine name")
        self.model = MachineSpec(
            name=name_tok.value,
            filename=self.filename,
            events=EventRegistry(self.limits.max_events),
            line=machine_tok.line,
        )
        self._expect('LBRACE', f"'{{' after machine {name_tok.value}")
        self._parse_block(None, f"machine {name_tok.value}", machine_tok.line)

        self._skip_separators()
        trailing = self._peek()
        if trailing.kind != EOF:
            raise self._error(f"Unexpected {trailing.describe()} after machine block", trailing.line)

        if not self.model.states:
            raise self._error(f"Machine '{self.model.name}' declares no states", machine_tok.line)

    def _parse_block(self, owner: Optional[StateNode], label: str, opened_at: int):
        """
        Parse items until the closing brace of a machine or state block

        Args:
            owner: Innermost open state, None for the machine body
            label: Block description for the unterminated-block error
            opened_at: Line of the block's opening keyword
        """
        while True:
            tok = self._peek()

            if tok.kind == 'SEMI':
                self._advance()
            elif tok.kind == 'RBRACE':
                self._advance()
                return
            elif tok.kind == EOF:
                raise self._error(f"Unterminated block '{label}'", opened_at)
            elif tok.kind == 'STATE':
                self._parse_state(owner)
            elif tok.kind in ('INITIAL', 'ENTRY', 'EXIT'):
                self._parse_directive(owner)
            elif tok.kind == 'HISTORY':
                self._advance()
                if owner is None:
                    raise self._error("'history' outside of a state", tok.line)
                # Explicit declaration, OR'ed with the flag derived from targets
                owner.history_declared = True
            elif tok.kind == 'ON':
                if owner is None:
                    raise self._error("Transition outside of a state", tok.line)
                self._parse_transition(owner)
            else:
                raise self._error(f"Unexpected {tok.describe()}", tok.line)

    def _parse_state(self, parent: Optional[StateNode]):
        state_tok = self._advance()
        name_tok = self._expect_name("state name")
        name = name_tok.value

        depth = len(self._open_states)
        if depth >= self.limits.max_depth:
            raise CapacityExceeded(
                'nesting levels', self.limits.max_depth,
                f"state '{name}' at {self.filename}:{state_tok.line}"
            )
        if len(self.model.states) >= self.limits.max_states:
            raise CapacityExceeded(
                'states', self.limits.max_states,
                f"state '{name}' at {self.filename}:{state_tok.line}"
            )

        full_path = f"{parent.full_path}{PATH_SEPARATOR}{name}" if parent else name
        if len(full_path) > self.limits.max_path:
            raise CapacityExceeded(
                'characters in path', self.limits.max_path,
                f"'{full_path}' at {self.filename}:{state_tok.line}"
            )
        if full_path in self.model.states:
            raise self._error(f"Duplicate state '{full_path}'", state_tok.line)

        state = StateNode(
            name=name,
            full_path=full_path,
            parent=parent.full_path if parent else None,
            depth=depth,
            document_order=len(self.model.states),
            line=state_tok.line,
        )
        self.model.states[full_path] = state
        if parent:
            parent.children.append(full_path)

        self._expect('LBRACE', f"'{{' after state {name}")
        self._open_states.append(state)
        self._parse_block(state, f"state {name}", state_tok.line)
        self._open_states.pop()

    def _parse_directive(self, owner: Optional[StateNode]):
        """initial:/entry:/exit: against the innermost open state, or the machine"""
        keyword = self._advance()
        self._expect('COLON', f"':' after '{keyword.value}'")

        if keyword.kind == 'INITIAL':
            value = self._expect_name("initial state", dotted=True).value
            if owner is not None:
                owner.initial = value
            else:
                self.model.initial = value
            return

        hook = self._parse_hook(f"{keyword.value} action")
        target = owner if owner is not None else self.model
        if keyword.kind == 'ENTRY':
            target.entry_action = hook
        else:
            target.exit_action = hook

    def _parse_hook(self, what: str) -> str:
        """NAME with optional () suffix"""
        name = self._expect_name(what).value
        if self._peek().kind == 'LPAREN':
            self._advance()
            self._expect('RPAREN', f"')' after {name}(")
        return name

    def _parse_transition(self, owner: StateNode):
        on_tok = self._advance()
        event = self._expect_name("event name").value

        guard = ""
        if self._peek().kind == 'LBRACKET':
            self._advance()
            guard = self._parse_hook("guard")
            self._expect('RBRACKET', f"']' after guard {guard}")

        if self._peek().kind != 'ARROW':
            raise self._error(f"Missing '->' in transition 'on {event}'", on_tok.line)
        self._advance()

        target = self._expect_name("transition target", dotted=True).value

        action = ""
        if self._peek().kind == 'SLASH':
            self._advance()
            action = self._parse_hook("action")

        self._add_transition(Transition(
            event=event,
            source=owner.full_path,
            raw_target=target,
            guard=guard,
            action=action,
            line=on_tok.line,
        ))

    def _add_transition(self, transition: Transition):
        """Register the event and store the transition; (source, event) is last-wins"""
        self.model.events.add(transition.event)

        key = (transition.source, transition.event)
        if key in self._transition_index:
            index = self._transition_index[key]
            previous = self.model.transitions[index]
            logging.warning(
                f"{self.filename}:{transition.line}: duplicate transition '{transition.event}' "
                f"in state '{transition.source}' replaces line {previous.line}"
            )
            self.model.transitions[index] = transition
            return

        if len(self.model.transitions) >= self.limits.max_transitions:
            raise CapacityExceeded(
                'transitions', self.limits.max_transitions,
                f"'on {transition.event}' at {self.filename}:{transition.line}"
            )
        self._transition_index[key] = len(self.model.transitions)
        self.model.transitions.append(transition)
