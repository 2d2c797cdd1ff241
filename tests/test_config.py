"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for deployment configs.
"""

import os
import shutil
import tempfile

import pytest
import yaml

from pockity.config.loader import (
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_OBJECTS,
    EnforcementMode,
    PockityConfig,
    QuotaConfig,
    StorageConfig,
    UrlMode,
    default_config,
    load_config,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_minimal_config_uses_defaults(self):
        """Only the bucket is required; everything else falls back."""
        path = self._write_config({"storage": {"bucket": "pockity-files"}})

        config = load_config(path)

        assert isinstance(config, PockityConfig)
        assert config.storage.bucket == "pockity-files"
        assert config.storage.url_mode == UrlMode.PERMANENT
        assert config.storage.signed_url_expiry == 3600
        assert config.quota.default_max_bytes == DEFAULT_MAX_BYTES == 1024 ** 3
        assert config.quota.default_max_objects == DEFAULT_MAX_OBJECTS == 1000
        assert config.quota.enforcement == EnforcementMode.BEST_EFFORT
        assert config.consistency.compensate_failed_writes is False
        assert config.database.path == "pockity.db"
        assert config.logging.level == "INFO"

    def test_full_config_loads_correctly(self):
        """Test that every section is parsed."""
        path = self._write_config({
            "storage": {
                "bucket": "pockity-files",
                "region": "eu-west-1",
                "url_mode": "SIGNED",
                "signed_url_expiry": 600,
            },
            "quota": {
                "default_max_bytes": 2048,
                "default_max_objects": 5,
                "enforcement": "strict",
                "max_file_size": 1024,
            },
            "consistency": {"compensate_failed_writes": True},
            "database": {"path": "/tmp/p.db"},
            "logging": {"level": "debug"},
        })

        config = load_config(path)

        assert config.storage.region == "eu-west-1"
        assert config.storage.url_mode == UrlMode.SIGNED
        assert config.storage.signed_url_expiry == 600
        assert config.quota == QuotaConfig(
            default_max_bytes=2048,
            default_max_objects=5,
            enforcement=EnforcementMode.STRICT,
            max_file_size=1024,
        )
        assert config.consistency.compensate_failed_writes is True
        assert config.database.path == "/tmp/p.db"
        assert config.logging.level == "DEBUG"

    def test_missing_file(self):
        """Test missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="config file not found"):
            load_config(os.path.join(self.temp_dir, "absent.yaml"))

    def test_invalid_yaml(self):
        """Test malformed YAML raises YAMLError."""
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("storage: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_config(path)

    def test_empty_file(self):
        """Test empty config is rejected."""
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()

        with pytest.raises(ValueError, match="empty"):
            load_config(path)

    def test_missing_storage_section(self):
        """Test storage section is required."""
        path = self._write_config({"quota": {"default_max_objects": 10}})

        with pytest.raises(ValueError, match="Missing required 'storage'"):
            load_config(path)

    def test_missing_bucket(self):
        """Test storage.bucket is required."""
        path = self._write_config({"storage": {"region": "us-east-1"}})

        with pytest.raises(ValueError, match="bucket"):
            load_config(path)

    def test_unknown_top_level_key(self):
        """Test unknown sections are rejected."""
        path = self._write_config({"storage": {"bucket": "b"}, "billing": {}})

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(path)

    def test_unknown_nested_key(self):
        """Test typos inside a section are rejected."""
        path = self._write_config({"storage": {"bucket": "b"}, "quota": {"max_byte": 10}})

        with pytest.raises(ValueError, match="Unknown keys in quota"):
            load_config(path)

    @pytest.mark.parametrize("value", [0, -5, "100", True, 1.5])
    def test_invalid_quota_values(self, value):
        """Test quota limits must be positive integers."""
        path = self._write_config({"storage": {"bucket": "b"}, "quota": {"default_max_bytes": value}})

        with pytest.raises(ValueError, match="default_max_bytes"):
            load_config(path)

    def test_invalid_enforcement_mode(self):
        """Test enforcement must be a known mode."""
        path = self._write_config({"storage": {"bucket": "b"}, "quota": {"enforcement": "hard"}})

        with pytest.raises(ValueError, match="must be one of"):
            load_config(path)

    def test_invalid_url_mode(self):
        """Test url_mode must be permanent or signed."""
        path = self._write_config({"storage": {"bucket": "b", "url_mode": "public"}})

        with pytest.raises(ValueError, match="must be one of"):
            load_config(path)

    def test_compensation_flag_must_be_bool(self):
        """Test compensate_failed_writes rejects non-boolean values."""
        path = self._write_config({
            "storage": {"bucket": "b"},
            "consistency": {"compensate_failed_writes": "yes"},
        })

        with pytest.raises(ValueError, match="boolean"):
            load_config(path)

    def test_invalid_logging_level(self):
        """Test unknown logging levels are rejected."""
        path = self._write_config({"storage": {"bucket": "b"}, "logging": {"level": "loud"}})

        with pytest.raises(ValueError, match="logging level"):
            load_config(path)


class TestConfigObjects:
    """Test dataclass validation and helpers."""

    def test_default_config(self):
        """Test default_config builds a complete configuration."""
        config = default_config("bucket-a", "x.db")
        assert config.storage.bucket == "bucket-a"
        assert config.database.path == "x.db"
        assert config.quota.enforcement == EnforcementMode.BEST_EFFORT

    def test_storage_config_rejects_blank_bucket(self):
        """Test StorageConfig validates the bucket."""
        with pytest.raises(ValueError):
            StorageConfig(bucket="  ")

    def test_quota_config_rejects_non_positive(self):
        """Test QuotaConfig validates limits."""
        with pytest.raises(ValueError):
            QuotaConfig(default_max_objects=0)

    def test_config_is_immutable(self):
        """Test configuration objects are frozen."""
        config = default_config("bucket-a")
        with pytest.raises(Exception):
            config.storage = StorageConfig(bucket="other")
