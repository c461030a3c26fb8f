"""Blade - a standalone Blade view environment.

Wires the finder, compiler, cache, engines and view factory together so
templates can be rendered without a surrounding framework:

    blade = Blade("views", ".cache/views")
    blade.share("app_name", "Acme")
    html = blade.render("pages.home", {"user": user})
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Union

from bladekit.cache import CompiledCache
from bladekit.compiler import BladeCompiler, DirectiveHandler, Extension
from bladekit.config import BladeConfig
from bladekit.engine import CompilerEngine, EngineResolver, FileEngine
from bladekit.exceptions import ViewNotFoundError
from bladekit.factory import BLADE_ENGINE, FILE_ENGINE, ViewCallback, ViewFactory
from bladekit.finder import ViewFinder, is_templated
from bladekit.view import View

log = logging.getLogger(__name__)

PathArg = Union[str, Path]


class Blade:
    """Standalone Blade environment.

    Everything is constructed eagerly in ``__init__``; a custom ``factory``
    replaces the default one (its finder and engines are used as given).
    """

    def __init__(
        self,
        view_paths: Union[PathArg, Iterable[PathArg]],
        cache_path: PathArg,
        factory: Optional[ViewFactory] = None,
        extensions: Optional[List[str]] = None,
    ):
        if isinstance(view_paths, (str, Path)):
            view_paths = [view_paths]
        self.view_paths: List[Path] = [Path(p) for p in view_paths]
        self.cache_path = Path(cache_path)

        if factory is None:
            finder = ViewFinder(self.view_paths, extensions)
            self._compiler = BladeCompiler(finder, CompiledCache(self.cache_path))
            engines = EngineResolver()
            self._engine = CompilerEngine(self._compiler)
            engines.register(BLADE_ENGINE, self._engine)
            engines.register(FILE_ENGINE, FileEngine())
            factory = ViewFactory(engines, finder)
        else:
            engine = factory.engines.resolve(BLADE_ENGINE)
            if not isinstance(engine, CompilerEngine):
                raise TypeError("The factory's blade engine must be a CompilerEngine")
            self._engine = engine
            self._compiler = engine.compiler

        self._factory = factory

    @classmethod
    def from_config(cls, config: BladeConfig) -> "Blade":
        """Build a Blade environment from a loaded configuration."""
        blade = cls(config.view_paths, config.cache_path, extensions=config.extensions)
        for namespace, hints in config.namespaces.items():
            blade.add_namespace(namespace, hints)
        if config.shared:
            blade.share(config.shared)
        return blade

    # -- compilation -------------------------------------------------------------

    def compile(self, path: Optional[PathArg] = None) -> List[Path]:
        """Compile every Blade template under a directory (pre-warming the cache).

        ``path`` defaults to the first view path; a file path compiles its
        directory. Each template is also parsed by Jinja2, so output that can
        never render fails here rather than at render time.

        Returns:
            The template files compiled, in walk order.

        Raises:
            ViewNotFoundError: If ``path`` does not exist.
            TemplateCompileError: If a template cannot be compiled.
        """
        directory = Path(path) if path is not None else self.view_paths[0]
        if not directory.exists():
            raise ViewNotFoundError(str(directory), [directory], reason="no such file or directory")
        if not directory.is_dir():
            directory = directory.parent

        compiled: List[Path] = []
        for root, dirs, files in os.walk(directory):
            dirs.sort()
            for filename in sorted(files):
                file = Path(root) / filename
                if is_templated(file):
                    self._engine.prepare(file)
                    compiled.append(file)

        log.info("Compiled %d templates under %s", len(compiled), directory)
        return compiled

    # -- rendering ---------------------------------------------------------------

    def render(
        self,
        view: str,
        data: Optional[Mapping[str, Any]] = None,
        merge_data: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Render a template."""
        return self.make(view, data, merge_data).render()

    def make(
        self,
        view: str,
        data: Optional[Mapping[str, Any]] = None,
        merge_data: Optional[Mapping[str, Any]] = None,
    ) -> View:
        """Create a new view instance."""
        return self._factory.make(view, data, merge_data)

    def view(self, view: str, data: Optional[Mapping[str, Any]] = None) -> str:
        """Get the evaluated view contents for a named view."""
        return self.make(view, data).render()

    def exists(self, view: str) -> bool:
        return self._factory.exists(view)

    # -- factory passthrough -----------------------------------------------------

    def share(self, key: Union[str, Mapping[str, Any]], value: Any = None) -> Any:
        """Add a piece of shared data to the environment."""
        return self._factory.share(key, value)

    def composer(self, views: Union[str, Iterable[str]], callback: ViewCallback) -> list:
        """Register a view composer."""
        return self._factory.composer(views, callback)

    def creator(self, views: Union[str, Iterable[str]], callback: ViewCallback) -> list:
        """Register a view creator."""
        return self._factory.creator(views, callback)

    def add_namespace(self, namespace: str, hints: Union[PathArg, Iterable[PathArg]]) -> "Blade":
        """Add a new namespace to the loader."""
        self._factory.add_namespace(namespace, hints)
        return self

    # -- compiler passthrough ----------------------------------------------------

    @property
    def compiler(self) -> BladeCompiler:
        return self._compiler

    def get_compiler(self) -> BladeCompiler:
        return self._compiler

    def extend(self, compiler: Extension) -> "Blade":
        """Register a custom Blade compiler."""
        self._compiler.extend(compiler)
        return self

    def directive(self, name: str, handler: DirectiveHandler) -> "Blade":
        """Register a handler for custom directives."""
        self._compiler.directive(name, handler)
        return self

    @property
    def factory(self) -> ViewFactory:
        return self._factory

    def get_factory(self) -> ViewFactory:
        return self._factory
