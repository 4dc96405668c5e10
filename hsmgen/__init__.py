"""hsmgen - Hierarchical state machine compiler and C code generator."""

from hsmgen.compiler import compile_file, compile_text
from hsmgen.errors import (
    CapacityExceeded,
    HSMError,
    HSMIOError,
    NameClash,
    ParseError,
    ReentrantDispatch,
    UnresolvedReference,
)
from hsmgen.hsm_parser import EventRegistry, HSMParser, MachineSpec, StateNode, Transition
from hsmgen.resolver import PathResolver
from hsmgen.runtime import HSMBindings, HSMDispatcher, RuntimeContext
from hsmgen.tables import NO_STATE, MachineTables, StateInfo, TableBuilder, TransitionEntry

__all__ = [
    "CapacityExceeded",
    "EventRegistry",
    "HSMBindings",
    "HSMDispatcher",
    "HSMError",
    "HSMIOError",
    "HSMParser",
    "MachineSpec",
    "MachineTables",
    "NameClash",
    "NO_STATE",
    "ParseError",
    "PathResolver",
    "ReentrantDispatch",
    "RuntimeContext",
    "StateInfo",
    "StateNode",
    "TableBuilder",
    "Transition",
    "TransitionEntry",
    "UnresolvedReference",
    "compile_file",
    "compile_text",
]
