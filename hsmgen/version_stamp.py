#!/usr/bin/env python3
"""
Read and format the GENERATOR_VERSION metadata file.

The file is plain `key: value` lines written next to the generated
sources, recording which generator produced them and from what.

Usage:
    python3 -m hsmgen.version_stamp <GENERATOR_VERSION path>

Output:
    Prints the recorded key/value pairs to stdout
"""

import sys
from datetime import datetime, timezone
from typing import Dict, Optional

from hsmgen.config import GENERATOR_CONFIG
from hsmgen.errors import HSMError, HSMIOError
from hsmgen.tables import MachineTables


def build_version_stamp(tables: MachineTables, profile: str,
                        now: Optional[datetime] = None) -> Dict[str, str]:
    """
    Collect the metadata recorded for one generation run

    Args:
        tables: Compiled machine
        profile: Build profile, recorded verbatim
        now: Generation time (default: current UTC time)

    Returns:
        Ordered key -> value mapping
    """
    now = now or datetime.now(timezone.utc)
    return {
        GENERATOR_CONFIG['name']: GENERATOR_CONFIG['version'],
        'generated': now.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
        'profile': profile,
        'machine': tables.name,
        'states': str(len(tables.states)),
        'events': str(len(tables.events)),
        'transitions': str(len(tables.transitions)),
    }


def read_version_stamp(stamp_path) -> Dict[str, str]:
    """
    Read a GENERATOR_VERSION file

    Args:
        stamp_path: Path to the file

    Returns:
        key -> value mapping, in file order

    Raises:
        HSMIOError: If the file cannot be read
        HSMError: If a non-empty line has no `key:` part
    """
    try:
        with open(stamp_path, 'r', encoding='utf-8') as f:
            lines = f.readlines()
    except OSError as e:
        raise HSMIOError(stamp_path, e) from e

    values = {}
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        if ':' not in line:
            raise HSMError(f"{stamp_path}:{number}: expected 'key: value', got '{line}'")
        key, _, value = line.partition(':')
        values[key.strip()] = value.strip()

    return values


def main():
    if len(sys.argv) != 2:
        print("Usage: python3 -m hsmgen.version_stamp <GENERATOR_VERSION path>", file=sys.stderr)
        return 1

    try:
        values = read_version_stamp(sys.argv[1])
    except HSMError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    for key, value in values.items():
        print(f"{key}: {value}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
