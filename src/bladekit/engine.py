"""Render engines - turn a resolved view file plus data into text.

- CompilerEngine: Blade templates, compiled to Jinja2 and executed
- FileEngine: static files, returned verbatim
"""

from __future__ import annotations

import traceback
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple, Union

from jinja2 import BaseLoader, Environment, TemplateNotFound, TemplateSyntaxError

from bladekit.artifact import CompiledArtifact
from bladekit.compiler import BladeCompiler
from bladekit.exceptions import (
    BladeError,
    RenderError,
    TemplateCompileError,
    ViewNotFoundError,
)
from bladekit.jinja_env import get_blade_jinja_env


class Engine(ABC):
    """Base class for render engines."""

    def prepare(self, path: Union[str, Path]) -> None:
        """Get a view file ready for rendering. Called when a view is made."""
        pass

    @abstractmethod
    def get(self, path: Union[str, Path], data: Mapping[str, Any]) -> str:
        """Render the file at ``path`` with ``data``."""
        pass


class FileEngine(Engine):
    """Serves non-templated files as-is."""

    def get(self, path: Union[str, Path], data: Mapping[str, Any]) -> str:
        try:
            return Path(path).read_bytes().decode("utf-8")
        except FileNotFoundError as exc:
            raise ViewNotFoundError(str(path), [Path(path)]) from exc
        except UnicodeDecodeError as exc:
            raise TemplateCompileError(f"File is not valid UTF-8: {exc.reason}", str(path)) from exc


class CompiledLoader(BaseLoader):
    """Jinja2 loader serving compiled artifacts by absolute source path.

    A loaded template stays up to date while the cache still holds the same
    artifact and the source file is unchanged.
    """

    def __init__(self, compiler: BladeCompiler):
        self.compiler = compiler

    def get_source(
        self, environment: Environment, template: str
    ) -> Tuple[str, Optional[str], Optional[Callable[[], bool]]]:
        try:
            artifact = self.compiler.get(template)
        except ViewNotFoundError as exc:
            raise TemplateNotFound(template) from exc

        compiler = self.compiler

        def uptodate() -> bool:
            try:
                return (
                    not compiler.is_expired(artifact.path)
                    and compiler.cache.get(artifact.path) is artifact
                )
            except ViewNotFoundError:
                return False

        return artifact.source, artifact.path, uptodate


class CompilerEngine(Engine):
    """Executes compiled Blade templates with Jinja2."""

    def __init__(self, compiler: BladeCompiler):
        self.compiler = compiler
        self.environment = get_blade_jinja_env(CompiledLoader(compiler))

    def prepare(self, path: Union[str, Path]) -> None:
        """Compile the template and its dependencies, then load them into Jinja2.

        Raises:
            TemplateCompileError: If any compiled output is not valid Jinja2.
        """
        pending = [self.compiler.ensure_compiled(path).path]
        seen: Set[str] = set()
        while pending:
            key = pending.pop()
            if key in seen:
                continue
            seen.add(key)
            try:
                self.environment.get_template(key)
            except TemplateNotFound as exc:
                raise ViewNotFoundError(exc.name) from exc
            except TemplateSyntaxError as exc:
                raise self._syntax_error(exc) from exc
            pending.extend(self.compiler.get(key).dependencies)

    def get(self, path: Union[str, Path], data: Mapping[str, Any]) -> str:
        """Render a template file.

        Raises:
            ViewNotFoundError: If the file (or an included file) is missing.
            TemplateCompileError: If the compiled output is not valid.
            RenderError: If evaluating an embedded expression fails.
        """
        artifact = self.compiler.ensure_compiled(path)

        try:
            template = self.environment.get_template(artifact.path)
            return template.render(dict(data))
        except BladeError:
            raise
        except TemplateNotFound as exc:
            raise ViewNotFoundError(exc.name) from exc
        except TemplateSyntaxError as exc:
            raise self._syntax_error(exc) from exc
        except Exception as exc:
            raise self._render_error(exc, artifact) from exc

    def _artifact_for(self, filename: Optional[str]) -> Optional[CompiledArtifact]:
        if filename is None or filename not in self.compiler.cache:
            return None
        return self.compiler.cache.get(filename)

    def _syntax_error(self, exc: TemplateSyntaxError) -> TemplateCompileError:
        artifact = self._artifact_for(exc.filename)
        message = f"Invalid template syntax: {exc.message}"
        line = exc.lineno
        if artifact is not None:
            expression = artifact.expression_at(exc.lineno)
            if expression is not None:
                message += f" near [{expression}]"
            line = artifact.source_line_at(exc.lineno)
        return TemplateCompileError(message, exc.filename, line)

    def _render_error(self, exc: Exception, artifact: CompiledArtifact) -> RenderError:
        # innermost template frame in the (Jinja-rewritten) traceback
        for frame in reversed(traceback.extract_tb(exc.__traceback__)):
            owner = self._artifact_for(frame.filename)
            if owner is not None and frame.lineno is not None:
                return RenderError(
                    owner.expression_at(frame.lineno),
                    exc,
                    owner.path,
                    owner.source_line_at(frame.lineno),
                )
        return RenderError(None, exc, artifact.path)


class EngineResolver:
    """Engines by name, registered up front."""

    def __init__(self, engines: Optional[Dict[str, Engine]] = None):
        self._engines: Dict[str, Engine] = dict(engines or {})

    def register(self, name: str, engine: Engine) -> None:
        self._engines[name] = engine

    def resolve(self, name: str) -> Engine:
        try:
            return self._engines[name]
        except KeyError:
            raise BladeError(f"Engine [{name}] not found.") from None

    def __contains__(self, name: object) -> bool:
        return name in self._engines
