"""ViewFactory - resolves views, binds their data and fires view callbacks.

Data precedence when a view is made (later wins):

    shared data  <  merge data  <  call-site data

Composers run on every render of a matching view, in registration order.
Creators run once per View instance. Patterns accept ``*`` wildcards
(``admin.*``).
"""

from __future__ import annotations

import logging
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from bladekit.engine import Engine, EngineResolver
from bladekit.exceptions import ViewNotFoundError
from bladekit.finder import HINT_PATH_DELIMITER, ViewFinder, is_templated
from bladekit.view import View

log = logging.getLogger(__name__)

ViewCallback = Callable[[View], Any]

BLADE_ENGINE = "blade"
FILE_ENGINE = "file"


def normalize_name(name: str) -> str:
    """Normalize a view name to dot notation, keeping any namespace prefix."""
    name = name.strip()
    if HINT_PATH_DELIMITER not in name:
        return name.replace("/", ".")

    namespace, view = name.split(HINT_PATH_DELIMITER, 1)
    return namespace + HINT_PATH_DELIMITER + view.replace("/", ".")


def _patterns(views: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(views, str):
        views = [views]
    return [normalize_name(v) for v in views]


class ViewFactory:
    """Creates View handles from logical names."""

    def __init__(self, engines: EngineResolver, finder: ViewFinder):
        self.engines = engines
        self.finder = finder
        self._shared: Dict[str, Any] = {}
        self._composers: List[Tuple[str, ViewCallback]] = []
        self._creators: List[Tuple[str, ViewCallback]] = []

    # -- making views ------------------------------------------------------------

    def make(
        self,
        view: str,
        data: Optional[Mapping[str, Any]] = None,
        merge_data: Optional[Mapping[str, Any]] = None,
    ) -> View:
        """Resolve a view, compile it and bind its data. Nothing is rendered yet.

        Raises:
            ViewNotFoundError: If the name does not resolve to a file.
            TemplateCompileError: If the template (or one it includes) is invalid.
        """
        name = normalize_name(view)
        path = self.finder.find(name)
        log.debug("Making view %s from %s", name, path)
        return self._view_instance(name, path, data, merge_data)

    def file(
        self,
        path: Union[str, Path],
        data: Optional[Mapping[str, Any]] = None,
        merge_data: Optional[Mapping[str, Any]] = None,
    ) -> View:
        """Make a view from an explicit file path."""
        path = Path(path).expanduser().resolve()
        if not path.is_file():
            raise ViewNotFoundError(str(path), [path])
        return self._view_instance(str(path), path, data, merge_data)

    def first(
        self,
        views: Iterable[str],
        data: Optional[Mapping[str, Any]] = None,
        merge_data: Optional[Mapping[str, Any]] = None,
    ) -> View:
        """Make the first view in ``views`` that exists."""
        views = list(views)
        for view in views:
            if self.exists(view):
                return self.make(view, data, merge_data)
        raise ViewNotFoundError(", ".join(views), reason="none of the given views exist")

    def exists(self, view: str) -> bool:
        return self.finder.exists(normalize_name(view))

    def get_engine_from_path(self, path: Union[str, Path]) -> Engine:
        return self.engines.resolve(BLADE_ENGINE if is_templated(path) else FILE_ENGINE)

    def _view_instance(
        self,
        name: str,
        path: Path,
        data: Optional[Mapping[str, Any]],
        merge_data: Optional[Mapping[str, Any]],
    ) -> View:
        context: Dict[str, Any] = dict(self._shared)
        context.update(merge_data or {})
        context.update(data or {})
        engine = self.get_engine_from_path(path)
        engine.prepare(path)
        return View(self, engine, name, path, context)

    # -- shared data -------------------------------------------------------------

    def share(self, key: Union[str, Mapping[str, Any]], value: Any = None) -> Any:
        """Share data with every view made afterwards. Accepts a mapping."""
        if isinstance(key, Mapping):
            self._shared.update(key)
        else:
            self._shared[key] = value
        return value

    def shared(self, key: str, default: Any = None) -> Any:
        return self._shared.get(key, default)

    def get_shared(self) -> Dict[str, Any]:
        return dict(self._shared)

    # -- composers & creators ----------------------------------------------------

    def composer(self, views: Union[str, Iterable[str]], callback: ViewCallback) -> List[Tuple[str, ViewCallback]]:
        """Register a callback fired every time a matching view renders."""
        registered = [(pattern, callback) for pattern in _patterns(views)]
        self._composers.extend(registered)
        return registered

    def creator(self, views: Union[str, Iterable[str]], callback: ViewCallback) -> List[Tuple[str, ViewCallback]]:
        """Register a callback fired once per matching View instance."""
        registered = [(pattern, callback) for pattern in _patterns(views)]
        self._creators.extend(registered)
        return registered

    def call_composers(self, view: View) -> None:
        self._fire(self._composers, view)

    def call_creators(self, view: View) -> None:
        self._fire(self._creators, view)

    def _fire(self, callbacks: List[Tuple[str, ViewCallback]], view: View) -> None:
        for pattern, callback in callbacks:
            if fnmatchcase(view.name, pattern):
                callback(view)

    # -- finder delegation -------------------------------------------------------

    def add_location(self, location: Union[str, Path]) -> None:
        self.finder.add_location(location)

    def add_namespace(self, namespace: str, hints: Union[str, Path, Iterable[Union[str, Path]]]) -> None:
        self.finder.add_namespace(namespace, hints)

    def prepend_namespace(self, namespace: str, hints: Union[str, Path, Iterable[Union[str, Path]]]) -> None:
        self.finder.prepend_namespace(namespace, hints)

    def replace_namespace(self, namespace: str, hints: Union[str, Path, Iterable[Union[str, Path]]]) -> None:
        self.finder.replace_namespace(namespace, hints)

    def add_extension(self, extension: str) -> None:
        self.finder.add_extension(extension)
