"""TOML configuration loader.

Loads streaming defaults from persistream/config/defaults.toml or a
user-supplied file with the same layout.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from persistream.schemas.config import StreamingConfig

# Default config directory relative to the persistream package
_CONFIG_DIR = Path(__file__).parent / "config"


def default_config_path() -> Path:
    """Return the path of the packaged defaults.toml."""
    return _CONFIG_DIR / "defaults.toml"


def load_config(config_path: Path | None = None) -> StreamingConfig:
    """Load the streaming configuration from a TOML file.

    Args:
        config_path: Path to a TOML file with a [streaming] table.
            Defaults to persistream/config/defaults.toml.

    Returns:
        StreamingConfig with values from the file; keys that are absent
        keep their model defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the [streaming] section is not a table.
        pydantic.ValidationError: If a value has the wrong type or range.
    """
    path = config_path or default_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Streaming config not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    section = raw.get("streaming", {})
    if not isinstance(section, dict):
        raise ValueError(f"[streaming] in {path} must be a table")

    return StreamingConfig(**section)
