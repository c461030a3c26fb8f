"""Configuration parsing for blade.yaml

Example:

    view_paths: [views]
    cache_path: .cache/views
    extensions: [blade.html, html]
    namespaces:
      admin: [admin/views, vendor/admin/views]
    shared:
      app_name: Acme

Relative paths are resolved against the directory holding the file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from bladekit.exceptions import ConfigError

DEFAULT_CONFIG_FILE = "blade.yaml"


def _as_list(value: Any) -> Any:
    if isinstance(value, (str, Path)):
        return [str(value)]
    return value


class BladeConfig(BaseModel):
    """Full blade.yaml configuration"""

    view_paths: list[str] = Field(default_factory=lambda: ["views"])
    cache_path: str = ".cache/views"
    extensions: list[str] | None = None
    namespaces: dict[str, list[str]] = {}
    shared: dict[str, Any] = {}

    @field_validator("view_paths", mode="before")
    @classmethod
    def _coerce_view_paths(cls, value: Any) -> Any:
        return _as_list(value)

    @field_validator("namespaces", mode="before")
    @classmethod
    def _coerce_namespaces(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {ns: _as_list(hints) for ns, hints in value.items()}
        return value

    @classmethod
    def load(cls, path: Path) -> "BladeConfig":
        """Load config from yaml file. A missing file yields the defaults."""
        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Could not read {path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")

        try:
            config = cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration in {path}:\n{exc}") from exc

        return config.relative_to(path.parent)

    def relative_to(self, base: Path) -> "BladeConfig":
        """Resolve relative paths against ``base``."""

        def resolve(p: str) -> str:
            candidate = Path(p).expanduser()
            if not candidate.is_absolute():
                candidate = base / candidate
            return str(candidate)

        return self.model_copy(
            update={
                "view_paths": [resolve(p) for p in self.view_paths],
                "cache_path": resolve(self.cache_path),
                "namespaces": {
                    ns: [resolve(h) for h in hints] for ns, hints in self.namespaces.items()
                },
            }
        )


def find_config_file(start: Path | None = None) -> Path | None:
    """Find blade.yaml in the given directory or its parents."""
    cwd = (start or Path.cwd()).resolve()
    for parent in [cwd] + list(cwd.parents):
        candidate = parent / DEFAULT_CONFIG_FILE
        if candidate.exists():
            return candidate
    return None
