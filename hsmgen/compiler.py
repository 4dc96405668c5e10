"""
Compiler pipeline: parse -> resolve -> build tables

Each call owns its own MachineSpec; nothing is shared between calls.
"""

from typing import Optional, Tuple

from hsmgen.config import Limits
from hsmgen.hsm_parser import HSMParser, MachineSpec
from hsmgen.resolver import PathResolver
from hsmgen.tables import MachineTables, TableBuilder


def compile_text(text: str, filename: str = "<string>",
                 limits: Optional[Limits] = None) -> Tuple[MachineSpec, MachineTables]:
    """
    Compile specification text

    Args:
        text: .hsm source
        filename: Name used in diagnostics
        limits: Capacity limits (default: GENERATOR_CONFIG['limits'])

    Returns:
        (resolved MachineSpec, MachineTables)
    """
    model = HSMParser(limits).parse_text(text, filename)
    return _finish(model)


def compile_file(spec_path, limits: Optional[Limits] = None) -> Tuple[MachineSpec, MachineTables]:
    """Compile a specification file (see compile_text)"""
    model = HSMParser(limits).parse_file(spec_path)
    return _finish(model)


def _finish(model: MachineSpec) -> Tuple[MachineSpec, MachineTables]:
    PathResolver(model).resolve()
    return model, TableBuilder(model).build()
