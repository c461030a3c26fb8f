"""View - a resolved template bound to its data, rendered on demand."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional, Union

from markupsafe import Markup

from bladekit.engine import Engine

if TYPE_CHECKING:
    from bladekit.factory import ViewFactory


class View:
    """A lazy view handle returned by ``ViewFactory.make``.

    The template is compiled when the view is made; nothing is rendered
    until ``render()`` is called.
    """

    def __init__(
        self,
        factory: "ViewFactory",
        engine: Engine,
        name: str,
        path: Path,
        data: Optional[Mapping[str, Any]] = None,
    ):
        self.factory = factory
        self.engine = engine
        self.name = name
        self.path = path
        self.data: Dict[str, Any] = dict(data or {})
        self.created = False

    def with_(self, key: Union[str, Mapping[str, Any]], value: Any = None) -> "View":
        """Add a piece of data to the view. Accepts a mapping for several keys."""
        if isinstance(key, Mapping):
            self.data.update(key)
        else:
            self.data[key] = value
        return self

    def gather_data(self) -> Dict[str, Any]:
        """Data handed to the engine; nested views are rendered first."""
        data: Dict[str, Any] = {}
        for key, value in self.data.items():
            if isinstance(value, View):
                value = Markup(value.render())
            data[key] = value
        return data

    def render(self) -> str:
        """Fire composers and creators, then render through the engine."""
        self.factory.call_composers(self)
        if not self.created:
            self.created = True
            self.factory.call_creators(self)
        return self.engine.get(self.path, self.gather_data())

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __str__(self) -> str:
        return self.render()

    def __repr__(self) -> str:
        return f"View(name={self.name!r}, path={str(self.path)!r})"
