"""
Token definitions and tokenizer for .hsm specifications

Tokens are registered as plain data: one (name, lexeme, kind, doc) row
per token. Keyword lookup and punctuation matching are both derived
from TOKEN_DEFS, so adding a token is a one-line change.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterator, List

from hsmgen.errors import ParseError


@dataclass(frozen=True)
class TokenDef:
    """One row of the token registration list"""
    name: str
    lexeme: str
    kind: str  # 'keyword' or 'punct'
    doc: str


TOKEN_DEFS: List[TokenDef] = [
    TokenDef('MACHINE', 'machine', 'keyword', 'Opens the machine block'),
    TokenDef('STATE', 'state', 'keyword', 'Opens a (possibly nested) state block'),
    TokenDef('INITIAL', 'initial', 'keyword', 'Initial state of the machine or initial child of a composite'),
    TokenDef('ENTRY', 'entry', 'keyword', 'Entry action of the enclosing block'),
    TokenDef('EXIT', 'exit', 'keyword', 'Exit action of the enclosing block'),
    TokenDef('HISTORY', 'history', 'keyword', 'Declares shallow history on the enclosing state'),
    TokenDef('ON', 'on', 'keyword', 'Starts a transition'),
    TokenDef('ARROW', '->', 'punct', 'Separates event (and guard) from target'),
    TokenDef('LBRACE', '{', 'punct', 'Opens a block'),
    TokenDef('RBRACE', '}', 'punct', 'Closes a block'),
    TokenDef('COLON', ':', 'punct', 'Separates a directive from its value'),
    TokenDef('LBRACKET', '[', 'punct', 'Opens a guard'),
    TokenDef('RBRACKET', ']', 'punct', 'Closes a guard'),
    TokenDef('LPAREN', '(', 'punct', 'Optional call parentheses after a hook name'),
    TokenDef('RPAREN', ')', 'punct', 'Optional call parentheses after a hook name'),
    TokenDef('SLASH', '/', 'punct', 'Introduces a transition action'),
    TokenDef('SEMI', ';', 'punct', 'Optional statement separator'),
]

# Synthetic token kinds (not in the registration list)
IDENT = 'IDENT'
EOF = 'EOF'

KEYWORDS: Dict[str, str] = {d.lexeme: d.name for d in TOKEN_DEFS if d.kind == 'keyword'}
PUNCTUATION: Dict[str, str] = {d.lexeme: d.name for d in TOKEN_DEFS if d.kind == 'punct'}

# Longest lexemes first so '->' wins over any single-character prefix
_PUNCT_PATTERN = '|'.join(re.escape(lexeme) for lexeme in sorted(PUNCTUATION, key=len, reverse=True))

_TOKEN_RE = re.compile(
    r'(?P<newline>\n)'
    r'|(?P<space>[ \t\r\f\v]+)'
    r'|(?P<comment>(?:#|//)[^\n]*)'
    r'|(?P<ident>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)'
    rf'|(?P<punct>{_PUNCT_PATTERN})'
)


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    line: int

    def describe(self) -> str:
        """Human-readable form for diagnostics"""
        if self.kind == EOF:
            return "end of file"
        return f"'{self.value}'"


def tokenize(text: str, filename: str = "<string>") -> Iterator[Token]:
    """
    Split specification text into tokens

    Args:
        text: Specification source
        filename: Used in ParseError diagnostics

    Yields:
        Token instances, always terminated by an EOF token

    Raises:
        ParseError: On any character that starts no token
    """
    line = 1
    pos = 0
    length = len(text)

    while pos < length:
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise ParseError(f"Unexpected character {text[pos]!r}", filename, line)

        group = match.lastgroup
        value = match.group()
        pos = match.end()

        if group == 'newline':
            line += 1
        elif group == 'ident':
            # Dotted paths are never keywords
            yield Token(KEYWORDS.get(value, IDENT), value, line)
        elif group == 'punct':
            yield Token(PUNCTUATION[value], value, line)
        # space and comment produce no token

    yield Token(EOF, "", line)
