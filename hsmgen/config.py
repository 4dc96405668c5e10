"""
hsmgen Generator Configuration - Single Source of Truth

This file contains the constants shared by the compiler pipeline and the
code generator: version string, capacity limits, defaults and the names
of the generated artifacts. Change a limit here and every parser picks
it up.

Usage:
    from hsmgen.config import GENERATOR_CONFIG, get_limits
    print(GENERATOR_CONFIG['limits']['max_states'])
"""

from dataclasses import dataclass, replace

GENERATOR_CONFIG = {
    'name': 'hsmgen',
    'description': 'Hierarchical State Machine Generator',
    'version': '1.0.0',

    # Capacity limits (exceeding any of them is a hard compilation failure)
    'limits': {
        'max_states': 128,
        'max_events': 64,
        'max_transitions': 256,
        'max_depth': 8,       # number of simultaneously open state blocks
        'max_name': 63,       # characters in a state/event/hook name
        'max_path': 127,      # characters in a dotted full path
    },

    # Defaults used by the CLI
    'defaults': {
        'profile': 'portable',
        'output_dir': '.',
    },

    # Artifact names, {prefix} is lower-cased before substitution
    'files': {
        'header': '{prefix}_hsm.h',
        'source': '{prefix}_hsm.c',
        'version_stamp': 'GENERATOR_VERSION',
    },
}


@dataclass(frozen=True)
class Limits:
    """Capacity limits applied by the parser"""
    max_states: int
    max_events: int
    max_transitions: int
    max_depth: int
    max_name: int
    max_path: int


def get_limits(**overrides) -> Limits:
    """
    Get capacity limits, optionally overriding individual values

    Args:
        **overrides: Limit names from GENERATOR_CONFIG['limits']

    Returns:
        Limits instance
    """
    limits = Limits(**GENERATOR_CONFIG['limits'])
    unknown = set(overrides) - set(GENERATOR_CONFIG['limits'])
    if unknown:
        raise ValueError(f"Unknown limit(s): {', '.join(sorted(unknown))}")
    return replace(limits, **overrides)


def get_artifact_names(prefix: str) -> dict:
    """Get generated file names for a prefix (header, source, version_stamp)"""
    lower = prefix.lower()
    return {key: pattern.format(prefix=lower)
            for key, pattern in GENERATOR_CONFIG['files'].items()}


def get_banner() -> str:
    """Get the banner line written at the top of every generated file"""
    return f"AUTO-GENERATED by {GENERATOR_CONFIG['name']} {GENERATOR_CONFIG['version']} - DO NOT EDIT"
