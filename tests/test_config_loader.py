"""Tests for persistream.settings: TOML config loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from persistream.schemas.config import StreamingConfig
from persistream.settings import default_config_path, load_config

# Path to the real config file shipped with the package
_CONFIG_DIR = Path(__file__).parent.parent / "persistream" / "config"


class TestLoadConfig:
    def test_loads_real_config(self):
        config = load_config(_CONFIG_DIR / "defaults.toml")
        assert isinstance(config, StreamingConfig)
        assert config.port == 8420
        assert config.db_path == "~/.persistream/streams.db"

    def test_default_path_is_packaged_file(self):
        assert default_config_path() == _CONFIG_DIR / "defaults.toml"
        assert default_config_path().exists()

    def test_no_argument_uses_defaults(self):
        config = load_config()
        assert config.stale_after == 600
        assert config.producer_timeout == 0

    def test_partial_file_keeps_model_defaults(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text('[streaming]\nport = 9000\nmodel = "anthropic/claude-haiku"\n')

        config = load_config(path)
        assert config.port == 9000
        assert config.model == "anthropic/claude-haiku"
        assert config.host == "127.0.0.1"
        assert config.history == 0

    def test_missing_section_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.toml"
        path.write_text("")
        assert load_config(path) == StreamingConfig()

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_non_table_section_raises(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text('streaming = "yes"\n')
        with pytest.raises(ValueError, match="must be a table"):
            load_config(path)

    def test_invalid_value_raises(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[streaming]\nport = 0\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_negative_timeout_rejected(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[streaming]\nproducer_timeout = -1\n")
        with pytest.raises(ValidationError):
            load_config(path)
