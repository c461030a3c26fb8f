"""ViewFinder - maps logical view names to template files.

Names are dot-separated (``admin.users.index``) with an optional namespace
prefix (``admin::dashboard``). Namespaced names search the namespace's
directories first, then the default search paths; the first existing file
wins.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple, Union

from bladekit.exceptions import ViewNotFoundError

log = logging.getLogger(__name__)

HINT_PATH_DELIMITER = "::"

TEMPLATE_MARKER = "blade"

DEFAULT_EXTENSIONS = ["blade.html", "blade.txt", "html", "txt"]

PathLike = Union[str, Path]


def is_templated(path: PathLike) -> bool:
    """Return True when a file name carries the ``.blade.`` marker."""
    return f".{TEMPLATE_MARKER}." in Path(path).name


def _as_paths(hints: Union[PathLike, Iterable[PathLike]]) -> List[Path]:
    if isinstance(hints, (str, Path)):
        hints = [hints]
    return [Path(h).expanduser().resolve() for h in hints]


class ViewFinder:
    """Locates view files in search paths and namespace hint directories."""

    def __init__(
        self,
        paths: Union[PathLike, Iterable[PathLike]] = (),
        extensions: Sequence[str] | None = None,
    ):
        self._paths: List[Path] = _as_paths(paths)
        self._hints: Dict[str, List[Path]] = {}
        self._extensions: List[str] = list(extensions or DEFAULT_EXTENSIONS)
        self._views: Dict[str, Path] = {}

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    @property
    def hints(self) -> Dict[str, List[Path]]:
        return {ns: list(dirs) for ns, dirs in self._hints.items()}

    @property
    def extensions(self) -> List[str]:
        return list(self._extensions)

    def find(self, name: str) -> Path:
        """Resolve a view name to an absolute file path.

        Raises:
            ViewNotFoundError: If no candidate file exists.
        """
        name = name.strip()
        if name in self._views:
            return self._views[name]

        if self.has_hint_information(name):
            path = self._find_namespaced_view(name)
        else:
            path = self._find_in_paths(name, self._paths)

        self._views[name] = path
        return path

    def exists(self, name: str) -> bool:
        try:
            self.find(name)
        except ViewNotFoundError:
            return False
        return True

    def _find_namespaced_view(self, name: str) -> Path:
        namespace, view = self._parse_namespace_segments(name)
        return self._find_in_paths(view, self._hints[namespace] + self._paths, name)

    def _parse_namespace_segments(self, name: str) -> Tuple[str, str]:
        segments = name.split(HINT_PATH_DELIMITER)
        if len(segments) != 2 or not segments[0] or not segments[1]:
            raise ViewNotFoundError(name, reason="invalid view name")

        namespace, view = segments
        if namespace not in self._hints:
            raise ViewNotFoundError(name, reason=f"no hint path defined for [{namespace}]")
        return namespace, view

    def _find_in_paths(self, view: str, paths: Sequence[Path], name: str | None = None) -> Path:
        tried: List[Path] = []
        for directory in paths:
            for candidate in self._possible_view_files(view):
                path = directory / candidate
                tried.append(path)
                if path.is_file():
                    log.debug("Resolved view %s -> %s", name or view, path)
                    return path

        raise ViewNotFoundError(name or view, tried)

    def _possible_view_files(self, view: str) -> Iterator[str]:
        base = view.replace(".", "/")
        for extension in self._extensions:
            yield f"{base}.{extension}"

    def has_hint_information(self, name: str) -> bool:
        return HINT_PATH_DELIMITER in name.strip()

    def add_location(self, location: PathLike) -> None:
        self._paths.extend(_as_paths(location))
        self.flush()

    def prepend_location(self, location: PathLike) -> None:
        self._paths[0:0] = _as_paths(location)
        self.flush()

    def add_namespace(self, namespace: str, hints: Union[PathLike, Iterable[PathLike]]) -> None:
        """Append directories to a namespace, creating it if needed."""
        self._hints.setdefault(namespace, []).extend(_as_paths(hints))
        self.flush()

    def prepend_namespace(self, namespace: str, hints: Union[PathLike, Iterable[PathLike]]) -> None:
        self._hints[namespace] = _as_paths(hints) + self._hints.get(namespace, [])
        self.flush()

    def replace_namespace(self, namespace: str, hints: Union[PathLike, Iterable[PathLike]]) -> None:
        self._hints[namespace] = _as_paths(hints)
        self.flush()

    def add_extension(self, extension: str) -> None:
        """Register an extension with the highest priority."""
        extension = extension.lstrip(".")
        if extension in self._extensions:
            self._extensions.remove(extension)
        self._extensions.insert(0, extension)
        self.flush()

    def flush(self) -> None:
        """Forget memoised name -> path resolutions."""
        self._views.clear()
