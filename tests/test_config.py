"""Tests for configuration loading."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from endless.config import DEFAULT_CONFIG, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove environment overrides set outside the test."""
    for name in ("ENDLESS_DB_PATH", "HOST", "PORT"):
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        """Test that no file gives the defaults."""
        assert load_config() == DEFAULT_CONFIG

    def test_defaults_are_copied(self):
        """Test that callers cannot mutate the module defaults."""
        config = load_config()
        config["server"]["port"] = 1

        assert DEFAULT_CONFIG["server"]["port"] == 8080

    def test_yaml_overrides_merge(self, tmp_path):
        """Test that a partial YAML file only overrides what it names."""
        path = tmp_path / "endless.yaml"
        path.write_text("server:\n  port: 9000\nstreaming:\n  jitter: 0.1\n", encoding="utf-8")

        config = load_config(path)

        assert config["server"]["port"] == 9000
        assert config["server"]["host"] == DEFAULT_CONFIG["server"]["host"]
        assert config["streaming"]["jitter"] == 0.1
        assert config["streaming"]["body_seconds"] == DEFAULT_CONFIG["streaming"]["body_seconds"]

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert load_config(path) == DEFAULT_CONFIG

    def test_non_mapping_yaml_raises(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValueError):
            load_config(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_environment_overrides(self, tmp_path, monkeypatch):
        """Test that environment variables win over the file."""
        path = tmp_path / "endless.yaml"
        path.write_text("server:\n  port: 9000\n", encoding="utf-8")
        monkeypatch.setenv("PORT", "7000")
        monkeypatch.setenv("HOST", "0.0.0.0")
        monkeypatch.setenv("ENDLESS_DB_PATH", str(tmp_path / "models.db"))

        config = load_config(path)

        assert config["server"]["port"] == 7000
        assert config["server"]["host"] == "0.0.0.0"
        assert config["store"]["db_path"] == str(tmp_path / "models.db")

    def test_shipped_config_loads(self):
        """Test that configs/endless.yaml matches the defaults."""
        path = Path(__file__).parent.parent / "configs" / "endless.yaml"

        assert load_config(path) == DEFAULT_CONFIG


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
