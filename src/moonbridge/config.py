"""
Session configuration.

A SessionConfig can be built in code or loaded from a YAML document:

    schema_version: "1.0"
    encoding: UTF-8
    max_memory: 67108864
    max_table_depth: 100
    package_path:
      - scripts/lib
    preload:
      - scripts/init.lua

Relative paths in a YAML document are resolved against the document's
directory.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .stack import DEFAULT_MAX_DEPTH


@dataclass
class SessionConfig:
    """Options applied when a LuaSession opens its VM."""
    encoding: str = "UTF-8"
    max_memory: Optional[int] = None        # bytes; None means unlimited
    max_table_depth: int = DEFAULT_MAX_DEPTH
    expose_python: bool = False             # register lupa's `python` module
    package_path: List[str] = field(default_factory=list)
    preload: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "SessionConfig":
        """Build a config from a mapping, rejecting unknown keys and bad types."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known - {"schema_version"})
        if unknown:
            raise ValueError(f"Unknown session config keys: {unknown}")

        config = cls()
        if "encoding" in data:
            if not isinstance(data["encoding"], str):
                raise ValueError("'encoding' must be a string")
            config.encoding = data["encoding"]
        if "max_memory" in data:
            max_memory = data["max_memory"]
            if max_memory is not None and (not isinstance(max_memory, int) or isinstance(max_memory, bool)
                                           or max_memory <= 0):
                raise ValueError("'max_memory' must be a positive integer or null")
            config.max_memory = max_memory
        if "max_table_depth" in data:
            depth = data["max_table_depth"]
            if not isinstance(depth, int) or isinstance(depth, bool) or depth <= 0:
                raise ValueError("'max_table_depth' must be a positive integer")
            config.max_table_depth = depth
        if "expose_python" in data:
            if not isinstance(data["expose_python"], bool):
                raise ValueError("'expose_python' must be a boolean")
            config.expose_python = data["expose_python"]
        for key in ("package_path", "preload"):
            if key in data:
                setattr(config, key, _path_list(key, data[key], base_dir))
        return config


def _path_list(key: str, value: Any, base_dir: Optional[Path]) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{key}' must be a list of paths")
    if base_dir is None:
        return list(value)
    return [str(base_dir / item) if not Path(item).is_absolute() else item for item in value]


def load_config(path: Union[str, Path]) -> SessionConfig:
    """Load and validate a YAML session config."""
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid session config in {path}: expected a mapping at the root")

    schema_version = str(data.get("schema_version", "1.0"))
    if not schema_version.startswith("1."):
        raise ValueError(
            f"Unsupported schema version '{schema_version}' in {path}. "
            f"Expected version 1.x"
        )

    return SessionConfig.from_dict(data, base_dir=path.parent)
