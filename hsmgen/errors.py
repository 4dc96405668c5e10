"""
hsmgen error taxonomy

All compile-time errors are fatal to the current compilation and are
never retried. The CLI turns any HSMError into a single diagnostic line.
"""

from typing import Optional


class HSMError(Exception):
    """Base class for every error raised by the compiler pipeline"""


class ParseError(HSMError):
    """Malformed block, missing arrow, unterminated nesting, unexpected token"""

    def __init__(self, message: str, filename: str = "<string>", line: int = 0):
        self.message = message
        self.filename = filename
        self.line = line
        super().__init__(f"{filename}:{line}: {message}")


class CapacityExceeded(HSMError):
    """Too many states/events/transitions, nesting too deep, or a name too long"""

    def __init__(self, kind: str, limit: int, detail: str = ""):
        self.kind = kind
        self.limit = limit
        message = f"Too many {kind} (limit {limit})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class UnresolvedReference(HSMError):
    """A state reference that no resolution rule can map to a state"""

    def __init__(self, reference: str, context: Optional[str] = None):
        self.reference = reference
        self.context = context
        message = f"Unresolved reference '{reference}'"
        if context:
            message += f" ({context})"
        super().__init__(message)


class NameClash(HSMError):
    """Two constructs that would emit the same C identifier"""

    def __init__(self, identifier: str, first: str, second: str):
        self.identifier = identifier
        self.first = first
        self.second = second
        super().__init__(f"{first} and {second} both generate '{identifier}'")


class HSMIOError(HSMError):
    """Cannot open the input or create an output artifact"""

    def __init__(self, path, cause: OSError):
        self.path = str(path)
        self.cause = cause
        reason = cause.strerror or str(cause)
        super().__init__(f"Cannot access {self.path}: {reason}")


class ReentrantDispatch(RuntimeError):
    """dispatch() called again on a context whose dispatch is still running"""
