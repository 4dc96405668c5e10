"""
Path Resolver

Resolves every raw transition target, every `initial:` reference and
the machine initial state to full state paths, binds `<path>.history`
targets to their composite, and computes ancestor chains.
"""

import logging
from typing import Optional

from hsmgen.errors import UnresolvedReference
from hsmgen.hsm_parser import HISTORY_SUFFIX, PATH_SEPARATOR, MachineSpec, StateNode, Transition


class PathResolver:
    """
    Resolve references inside a parsed MachineSpec

    Precedence for a target T declared in source state S:
        1. T is an existing full path (absolute)
        2. T has no separator and S.T exists (child of source)
        3. S has a parent P and P.T exists (sibling of source)
        4. T ends in .history: the prefix is resolved by rules 1-3 and
           the transition becomes a history reference bound to it
    Anything else raises UnresolvedReference.
    """

    def __init__(self, model: MachineSpec):
        self.model = model

    def resolve(self) -> MachineSpec:
        """
        Resolve the model in place

        Returns:
            The same MachineSpec, marked resolved

        Raises:
            UnresolvedReference: If any reference cannot be resolved, or a
                targeted composite has no initial chain down to a leaf
        """
        self._compute_ancestors()
        self._resolve_initial_children()

        for transition in self.model.transitions:
            self._resolve_transition(transition)

        self._resolve_machine_initial()
        self._check_leaf_reachability()

        self.model.resolved = True
        return self.model

    def resolve_target(self, raw_target: str, source: StateNode) -> Optional[str]:
        """
        Apply rules 1-3 to a target written in `source`

        Returns:
            Full path of the resolved state, or None
        """
        states = self.model.states

        # 1. Absolute reference
        if raw_target in states:
            return raw_target

        # 2. Child of source
        if PATH_SEPARATOR not in raw_target:
            child = f"{source.full_path}{PATH_SEPARATOR}{raw_target}"
            if child in states:
                return child

        # 3. Sibling of source
        if source.parent is not None:
            sibling = f"{source.parent}{PATH_SEPARATOR}{raw_target}"
            if sibling in states:
                return sibling

        return None

    def _compute_ancestors(self):
        # Declaration order guarantees parents are processed before children
        for state in self.model.states.values():
            if state.parent is None:
                state.ancestors = [state.full_path]
            else:
                state.ancestors = self.model.states[state.parent].ancestors + [state.full_path]

    def _resolve_initial_children(self):
        """`initial: X` inside a state: X is a child name or an absolute descendant path"""
        for state in self.model.states.values():
            if not state.initial:
                continue

            child = f"{state.full_path}{PATH_SEPARATOR}{state.initial}"
            if child in self.model.states:
                state.initial_child = child
                continue

            candidate = self.model.states.get(state.initial)
            if candidate is not None and state.full_path in candidate.ancestors[:-1]:
                state.initial_child = candidate.full_path
                continue

            raise UnresolvedReference(
                state.initial,
                f"initial child of state '{state.full_path}' at {self.model.filename}:{state.line}"
            )

    def _resolve_transition(self, transition: Transition):
        source = self.model.states[transition.source]
        raw = transition.raw_target

        target = self.resolve_target(raw, source)
        if target is not None:
            transition.target = target
            transition.is_history_target = False
            return

        # 4. History reference
        if raw.endswith(HISTORY_SUFFIX):
            prefix = raw[:-len(HISTORY_SUFFIX)]
            owner = self.resolve_target(prefix, source) if prefix else None
            if owner is not None:
                transition.target = owner
                transition.is_history_target = True
                owner_state = self.model.states[owner]
                if not owner_state.history_targeted:
                    logging.debug(f"State '{owner}' has history (targeted by '{raw}')")
                owner_state.history_targeted = True
                return

        raise UnresolvedReference(
            raw,
            f"target of 'on {transition.event}' in state '{transition.source}' "
            f"at {self.model.filename}:{transition.line}"
        )

    def _resolve_machine_initial(self):
        # A missing initial defaults to the first root state in document order
        if not self.model.initial:
            first = self.model.root_states()[0]
            self.model.initial_state = first.full_path
            logging.info(f"Machine '{self.model.name}' has no initial state, using '{first.full_path}'")
            return

        if self.model.initial not in self.model.states:
            raise UnresolvedReference(self.model.initial, f"initial state of machine '{self.model.name}'")
        self.model.initial_state = self.model.initial

    def descend_to_leaf(self, path: str) -> str:
        """
        Follow initial children from `path` down to a leaf

        Raises:
            UnresolvedReference: If a composite on the way has no initial child
        """
        state = self.model.states[path]
        while state.is_composite:
            if state.initial_child is None:
                raise UnresolvedReference(
                    state.full_path,
                    f"composite state at {self.model.filename}:{state.line} has no initial child"
                )
            state = self.model.states[state.initial_child]
        return state.full_path

    def _check_leaf_reachability(self):
        """Every state that can be entered as a target must reach a leaf"""
        self.descend_to_leaf(self.model.initial_state)
        for transition in self.model.transitions:
            self.descend_to_leaf(transition.target)
