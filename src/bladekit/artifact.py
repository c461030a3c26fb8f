"""Compiled artifact IR - what the compiler produces and the cache stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

import msgspec


@dataclass
class CompileResult:
    """Output of compiling a single Blade source string."""

    source: str  # Jinja2 template source
    dependencies: List[str] = field(default_factory=list)  # absolute paths, in order
    expressions: Dict[int, str] = field(default_factory=dict)  # compiled line -> expression
    lines: Dict[int, int] = field(default_factory=dict)  # compiled line -> source line


class CompiledArtifact(msgspec.Struct):
    """A compiled template, keyed by its absolute source path.

    ``source_mtime`` is the source file's ``st_mtime_ns`` at compile time; the
    artifact is stale as soon as the file's current value differs.
    """

    path: str
    source_mtime: int
    source: str
    dependencies: List[str] = msgspec.field(default_factory=list)
    expressions: Dict[int, str] = msgspec.field(default_factory=dict)
    lines: Dict[int, int] = msgspec.field(default_factory=dict)
    fingerprint: str = ""

    @classmethod
    def from_result(
        cls, path: str, source_mtime: int, result: CompileResult, fingerprint: str = ""
    ) -> "CompiledArtifact":
        return cls(
            path=path,
            source_mtime=source_mtime,
            source=result.source,
            dependencies=list(result.dependencies),
            expressions=dict(result.expressions),
            lines=dict(result.lines),
            fingerprint=fingerprint,
        )

    def expression_at(self, line: int) -> str | None:
        """Return the Blade expression emitted on a compiled line, if any."""
        return self.expressions.get(line)

    def source_line_at(self, line: int) -> int | None:
        """Return the template source line a compiled line came from, if known."""
        return self.lines.get(line)
