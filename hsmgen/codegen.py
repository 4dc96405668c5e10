#!/usr/bin/env python3
"""
HSM Static Code Generator (Python + Jinja2)

Generates table-driven hierarchical state machines in plain C from .hsm
specifications: a header with state/event enums and the API, a source
file with the hierarchy tables and the dispatcher, and a GENERATOR_VERSION
metadata file.
"""

import argparse
import errno
import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    select_autoescape,
)

from hsmgen.compiler import compile_file
from hsmgen.config import GENERATOR_CONFIG, get_artifact_names, get_banner
from hsmgen.errors import HSMError, HSMIOError, NameClash, ParseError
from hsmgen.hsm_parser import MachineSpec
from hsmgen.tables import MachineTables
from hsmgen.version_stamp import build_version_stamp

_C_IDENTIFIER = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')

# C99 keywords and the file-scope names emitted into <prefix>_hsm.c
_RESERVED_C_NAMES = frozenset([
    'auto', 'break', 'case', 'char', 'const', 'continue', 'default', 'do',
    'double', 'else', 'enum', 'extern', 'float', 'for', 'goto', 'if',
    'inline', 'int', 'long', 'register', 'restrict', 'return', 'short',
    'signed', 'sizeof', 'static', 'struct', 'switch', 'typedef', 'union',
    'unsigned', 'void', 'volatile', 'while', 'bool', 'true', 'false',
    'state_info', 'state_hooks', 'event_names', 'transition_t',
    'transition_count', 'transitions', 'find_transition', 'descend_to_leaf',
    'is_ancestor_or_self', 'enter_states',
])

# Public functions declared in <prefix>_hsm.h
_API_FUNCTIONS = ('init', 'dispatch', 'stop', 'state_name', 'state_path',
                  'event_name', 'get_parent', 'is_in')


def enum_name(path: str) -> str:
    """Turn a state path or event name into an enum suffix (Parent.Child -> PARENT_CHILD)"""
    return path.replace('.', '_').upper()


def check_identifiers(tables: MachineTables, prefix: str):
    """
    Reject machines whose generated C identifiers would collide

    Enum constants are upper-cased with '.' mapped to '_', so distinct
    names can meet (events 'go' and 'Go', state 'A.B' and root 'A_B').
    Hook names share one namespace with each other and with the
    generated functions and tables.

    Raises:
        NameClash: Naming the two constructs behind the same identifier
    """
    owners = {}

    def claim(identifier, construct):
        if identifier in owners:
            raise NameClash(identifier, owners[identifier], construct)
        owners[identifier] = construct

    for name in _RESERVED_C_NAMES:
        owners[name] = f"C name '{name}'"
    for suffix in _API_FUNCTIONS:
        claim(f"{prefix}_{suffix}", f"function '{prefix}_{suffix}'")
    claim(f"{prefix}_STATE_COUNT", "the state count")
    claim(f"{prefix}_EVENT_COUNT", "the event count")

    for state in tables.states:
        claim(f"{prefix}_STATE_{enum_name(state.full_path)}", f"state '{state.full_path}'")
    for event in tables.events:
        claim(f"{prefix}_EVENT_{enum_name(event)}", f"event '{event}'")
    for name in tables.action_names():
        claim(name, f"action '{name}'")
    for name in tables.guard_names():
        claim(name, f"guard '{name}'")


class CodeGenerator:
    """
    Static code generator for hierarchical state machines

    Uses Jinja2 templates to generate C code from compiled machine tables.
    Nothing is written until every artifact has been rendered.
    """

    def __init__(self, template_dir=None):
        if template_dir is None:
            template_dir = Path(__file__).parent / 'templates'
        self.template_dir = Path(template_dir)

        # Setup Jinja2 environment
        self.env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

        # Add custom filters
        self.env.filters['enum_name'] = enum_name
        self.env.filters['c_string'] = self._escape_c_string

    def _escape_c_string(self, text):
        """Escape C string literals"""
        if not text:
            return ""
        # Escape backslashes first
        text = text.replace('\\', '\\\\')
        # Escape quotes
        text = text.replace('"', '\\"')
        # Escape newlines
        text = text.replace('\n', '\\n')
        text = text.replace('\r', '\\r')
        text = text.replace('\t', '\\t')
        return text

    def _render_template(self, name: str, **context) -> str:
        """
        Render one template, mapping Jinja2 failures onto HSMError

        Raises:
            HSMIOError: Template file missing from the template directory
            ParseError: Template syntax error
            HSMError: Any other template failure
        """
        try:
            return self.env.get_template(name).render(**context)
        except TemplateNotFound as e:
            path = self.template_dir / name
            raise HSMIOError(path, FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path))) from e
        except TemplateSyntaxError as e:
            raise ParseError(e.message, e.filename or name, e.lineno) from e
        except TemplateError as e:
            raise HSMError(f"Template {name}: {e}") from e

    def render(self, tables: MachineTables, prefix: Optional[str] = None,
               profile: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, str]:
        """
        Render all artifacts in memory

        Args:
            tables: Compiled machine
            prefix: C identifier prefix (default: machine name)
            profile: Recorded in GENERATOR_VERSION (default: config profile)
            now: Generation time for GENERATOR_VERSION

        Returns:
            file name -> content, in write order

        Raises:
            NameClash: If two constructs would emit the same C identifier
        """
        prefix = prefix or tables.name
        if not _C_IDENTIFIER.fullmatch(prefix):
            raise HSMError(f"Invalid prefix '{prefix}': must be a C identifier")
        check_identifiers(tables, prefix)
        if profile is None:
            profile = GENERATOR_CONFIG['defaults']['profile']

        names = get_artifact_names(prefix)
        context = {
            'tables': tables,
            'prefix': prefix,
            'banner': get_banner(),
            'header_name': names['header'],
            'guard': f"{prefix.lower()}_HSM_H".upper(),
            'max_depth': max(s.depth for s in tables.states) + 1,
        }

        return {
            names['header']: self._render_template('hsm_header.jinja2', **context),
            names['source']: self._render_template('hsm_source.jinja2', **context),
            names['version_stamp']: self._render_template(
                'generator_version.jinja2', stamp=build_version_stamp(tables, profile, now)
            ),
        }

    def write_artifacts(self, artifacts: Dict[str, str], output_dir) -> List[Path]:
        """
        Commit rendered artifacts to output_dir, all or nothing

        Each artifact goes to a temporary sibling first; the temporaries are
        renamed into place only once all of them were written. A file being
        replaced is moved to `.<name>.bak` first and restored if a later
        rename fails, so the directory never mixes old and new artifacts.

        Raises:
            HSMIOError: If the directory or any file cannot be created
        """
        out = Path(output_dir)
        try:
            out.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise HSMIOError(out, e) from e

        pending = []
        current = out
        try:
            for name, content in artifacts.items():
                current = out / f".{name}.tmp"
                pending.append((current, out / name))
                current.write_text(content, encoding='utf-8')
        except OSError as e:
            _discard(tmp_path for tmp_path, _ in pending)
            raise HSMIOError(current, e) from e

        committed = []
        try:
            for tmp_path, final_path in pending:
                current = final_path
                backup = None
                if final_path.exists():
                    backup = final_path.with_name(f".{final_path.name}.bak")
                    os.replace(final_path, backup)
                committed.append((final_path, backup))
                os.replace(tmp_path, final_path)
        except OSError as e:
            _roll_back(committed)
            _discard(tmp_path for tmp_path, _ in pending)
            raise HSMIOError(current, e) from e

        _discard(backup for _, backup in committed if backup is not None)
        return [final_path for _, final_path in pending]

    def generate(self, spec_path: str, output_dir: str = '.', prefix: Optional[str] = None,
                 profile: Optional[str] = None) -> bool:
        """
        Generate C code from a .hsm file

        Args:
            spec_path: Path to the .hsm input file
            output_dir: Directory for generated files
            prefix: C identifier prefix (default: machine name)
            profile: Build profile recorded in GENERATOR_VERSION

        Returns:
            True if generation succeeded, False otherwise
        """
        try:
            model, tables = compile_file(spec_path)
            print_summary(model, tables)

            artifacts = self.render(tables, prefix=prefix, profile=profile)
            for path in self.write_artifacts(artifacts, output_dir):
                print(f"  ✓ Generated: {path}")

            return True

        except HSMError as e:
            print(f"Error: {e}", file=sys.stderr)
            return False


def _discard(paths):
    for path in paths:
        path.unlink(missing_ok=True)


def _roll_back(committed):
    """Undo renames in reverse order, restoring any backed-up file"""
    for final_path, backup in reversed(committed):
        try:
            final_path.unlink(missing_ok=True)
            if backup is not None:
                os.replace(backup, final_path)
        except OSError as e:
            logging.error(f"Could not restore {final_path}: {e}")


def print_summary(model: MachineSpec, tables: MachineTables):
    """Print machine counts and the indented state hierarchy"""
    print(f"Generating code for: {model.name}")
    print(f"  States: {len(tables.states)}")
    print(f"  Events: {len(tables.events)}")
    print(f"  Transitions: {len(tables.transitions)}")
    for state in model.state_list():
        line = f"    {'  ' * state.depth}{state.name}"
        if state.initial:
            line += f" [initial: {state.initial}]"
        if state.has_history:
            line += " [history]"
        print(line)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='hsmgen',
        description='Generate table-driven hierarchical state machines (C) from .hsm specifications',
        epilog='Output: <prefix>_hsm.h (enums, hierarchy info, API), '
               '<prefix>_hsm.c (dispatcher with history), GENERATOR_VERSION',
    )
    parser.add_argument('spec_file', help='Input .hsm specification')
    parser.add_argument('output_dir', nargs='?', default=GENERATOR_CONFIG['defaults']['output_dir'],
                        help='Output directory for generated files (default: .)')
    parser.add_argument('prefix', nargs='?', default=None,
                        help='C identifier prefix (default: machine name)')
    parser.add_argument('-t', '--template-dir', default=None,
                        help='Template directory (default: bundled templates)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--version', action='version',
                        version=f"{GENERATOR_CONFIG['name']} {GENERATOR_CONFIG['version']}")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')

    # Check input file exists
    if not Path(args.spec_file).exists():
        print(f"Error: Spec file not found: {args.spec_file}", file=sys.stderr)
        return 1

    # Recorded verbatim, even when set to an empty string
    profile = os.environ.get('PROFILE', GENERATOR_CONFIG['defaults']['profile'])

    # Generate code
    generator = CodeGenerator(template_dir=args.template_dir)
    success = generator.generate(args.spec_file, args.output_dir, prefix=args.prefix, profile=profile)

    return 0 if success else 1


if __name__ == '__main__':
    sys.exit(main())
