# refcount_checker/config.py
"""Checker configuration: naming conventions and driver policy."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Tuple, Union

_log = logging.getLogger(__name__)

DEFAULT_EXCLUDED_PATHS: Tuple[str, ...] = (
    "include/c++",
    "include/x86_64-linux-gnu",
    "include/llvm",
    "lib/clang",
)


class ConfigError(ValueError):
    """Raised for malformed configuration files or values."""


@dataclass(frozen=True)
class RefcheckConfig:
    """
    Attributes
    ----------
    owned_prefix    : class-name prefix marking refcounted object types
    borrowed_macro  : macro marking a borrowed return value
    stolen_macro    : macro marking a stolen return value
    excluded_paths  : path substrings identifying library code to skip
    fail_fast       : stop the run at the first unsuppressed finding of any kind
    suppress        : error ids to drop from the report
    """
    owned_prefix: str = "Box"
    borrowed_macro: str = "BORROWED"
    stolen_macro: str = "STOLEN"
    excluded_paths: Tuple[str, ...] = DEFAULT_EXCLUDED_PATHS
    fail_fast: bool = False
    suppress: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RefcheckConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown configuration keys: {', '.join(unknown)}")

        values = dict(data)
        for key in ("excluded_paths", "suppress"):
            if key in values:
                raw = values[key]
                if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
                    raise ConfigError(f"'{key}' must be a list of strings")
                values[key] = tuple(str(item) for item in raw)
        for key in ("owned_prefix", "borrowed_macro", "stolen_macro"):
            if key in values and not (isinstance(values[key], str) and values[key]):
                raise ConfigError(f"'{key}' must be a non-empty string")
        if "fail_fast" in values and not isinstance(values["fail_fast"], bool):
            raise ConfigError("'fail_fast' must be a boolean")
        return cls(**values)

    def merged(self, **overrides: Any) -> RefcheckConfig:
        """Return a copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        for key in ("excluded_paths", "suppress"):
            if key in changes:
                changes[key] = tuple(changes[key])
        return replace(self, **changes)


def load_config(path: Union[str, Path]) -> RefcheckConfig:
    """Read a JSON configuration file."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read configuration {p}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: top-level value must be an object")
    _log.debug("Loaded configuration from %s", p)
    return RefcheckConfig.from_mapping(data)
