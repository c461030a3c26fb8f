"""Jinja2 environment used to execute compiled Blade templates."""

from collections.abc import Mapping
from typing import Any, Iterable, Tuple

from jinja2 import BaseLoader, Environment, StrictUndefined

from bladekit.compiler import PAIRS_HELPER


def pairs(value: Any) -> Iterable[Tuple[Any, Any]]:
    """Key/value pairs for ``@foreach(items as key => value)``.

    Mappings yield their items, any other iterable is enumerated.
    """
    if isinstance(value, Mapping):
        return value.items()
    return enumerate(value)


def get_blade_jinja_env(loader: BaseLoader) -> Environment:
    """Create a Jinja2 Environment for compiled Blade templates.

    - autoescape on: ``{{ }}`` escapes, ``{!! !!}`` compiles to ``|safe``
    - StrictUndefined: referencing a missing variable is a render error
    - keep_trailing_newline: text renders byte-for-byte
    - loopcontrols: ``@break`` / ``@continue``

    Args:
        loader: Loader serving compiled artifacts by absolute path.

    Returns:
        Configured Jinja2 Environment.
    """
    env = Environment(
        loader=loader,
        autoescape=True,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        auto_reload=True,
        extensions=["jinja2.ext.loopcontrols"],
    )

    env.globals[PAIRS_HELPER] = pairs

    return env
