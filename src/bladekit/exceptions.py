"""bladekit Exceptions

Custom exceptions raised while locating, compiling and rendering views.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class BladeError(Exception):
    """Base exception for all bladekit errors."""

    pass


class ConfigError(BladeError):
    """Raised when a configuration file cannot be loaded or validated."""

    pass


class ViewNotFoundError(BladeError):
    """Raised when a logical view name does not resolve to a file."""

    def __init__(self, name: str, tried: Sequence[Path] = (), reason: str | None = None):
        self.name = name
        self.tried = list(tried)
        self.reason = reason

        message = f"View [{name}] not found"
        if reason:
            message += f": {reason}"
        if self.tried:
            message += " (tried: " + ", ".join(str(p) for p in self.tried) + ")"
        super().__init__(message)


class TemplateCompileError(BladeError):
    """Raised when template source cannot be compiled."""

    def __init__(self, message: str, path: str | None = None, line: int | None = None):
        self.message = message
        self.path = path
        self.line = line

        where = ""
        if path is not None:
            where = f" in {path}"
            if line is not None:
                where += f" on line {line}"
        elif line is not None:
            where = f" on line {line}"
        super().__init__(f"{message}{where}")


class UnbalancedDirectiveError(TemplateCompileError):
    """Raised when a block directive is opened but never closed, or vice versa."""

    def __init__(self, directive: str, message: str, path: str | None = None, line: int | None = None):
        self.directive = directive
        super().__init__(message, path=path, line=line)


class CircularTemplateReferenceError(TemplateCompileError):
    """Raised when templates include or extend each other in a cycle."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__("Circular template reference: " + " -> ".join(self.chain))


class RenderError(BladeError):
    """Raised when evaluating an embedded expression fails at render time.

    The original exception is available as ``cause`` and ``__cause__``.
    """

    def __init__(
        self,
        expression: str | None,
        cause: BaseException,
        path: str | None = None,
        line: int | None = None,
    ):
        self.expression = expression
        self.cause = cause
        self.path = path
        self.line = line

        subject = f"[{expression}]" if expression is not None else "template"
        where = f" in {path}" if path else ""
        super().__init__(
            f"Error evaluating {subject}{where}: {type(cause).__name__}: {cause}"
        )
