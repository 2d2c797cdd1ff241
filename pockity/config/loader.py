"""
Configuration management and loading.

Handles storage, quota and persistence settings for a Pockity deployment.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import yaml


GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024

DEFAULT_MAX_BYTES = 1 * GIB
DEFAULT_MAX_OBJECTS = 1000
DEFAULT_MAX_FILE_SIZE = 100 * MIB


class UrlMode(Enum):
    """How object URLs are handed back to callers."""
    PERMANENT = "permanent"
    SIGNED = "signed"


class EnforcementMode(Enum):
    """How strictly quotas are admitted.

    BEST_EFFORT checks the quota and increments usage in two steps, so
    concurrent uploads for one tenant can overshoot. STRICT reserves the
    usage with a conditional write before the object is stored.
    """
    BEST_EFFORT = "best_effort"
    STRICT = "strict"


@dataclass(frozen=True)
class StorageConfig:
    """Object store settings."""
    bucket: str
    region: Optional[str] = None
    url_mode: UrlMode = UrlMode.PERMANENT
    signed_url_expiry: int = 3600

    def __post_init__(self):
        if not self.bucket or not self.bucket.strip():
            raise ValueError("storage.bucket is required")
        if self.signed_url_expiry <= 0:
            raise ValueError("signed_url_expiry must be > 0")


@dataclass(frozen=True)
class QuotaConfig:
    """Fallback limits and admission policy."""
    default_max_bytes: int = DEFAULT_MAX_BYTES
    default_max_objects: int = DEFAULT_MAX_OBJECTS
    enforcement: EnforcementMode = EnforcementMode.BEST_EFFORT
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    def __post_init__(self):
        if self.default_max_bytes <= 0:
            raise ValueError("default_max_bytes must be > 0")
        if self.default_max_objects <= 0:
            raise ValueError("default_max_objects must be > 0")
        if self.max_file_size <= 0:
            raise ValueError("max_file_size must be > 0")


@dataclass(frozen=True)
class ConsistencyConfig:
    """Store/ledger consistency behavior."""
    compensate_failed_writes: bool = False


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = "pockity.db"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        if self.level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown logging level: {self.level}")


@dataclass(frozen=True)
class PockityConfig:
    """Complete deployment configuration."""
    storage: StorageConfig
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    consistency: ConsistencyConfig = field(default_factory=ConsistencyConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def default_config(bucket: str, db_path: str = "pockity.db") -> PockityConfig:
    """Build a configuration with every optional section at its default."""
    return PockityConfig(
        storage=StorageConfig(bucket=bucket),
        database=DatabaseConfig(path=db_path),
    )


def load_config(path: str) -> PockityConfig:
    """Load and validate Pockity configuration from a YAML file.

    Unknown keys are rejected at every level so that a typo never silently
    falls back to a default quota.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated PockityConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Pockity config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'storage', 'quota', 'consistency', 'database', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'storage' not in raw_config:
        raise ValueError("Missing required 'storage' section")

    return PockityConfig(
        storage=_parse_storage(_section(raw_config, 'storage')),
        quota=_parse_quota(_section(raw_config, 'quota')),
        consistency=_parse_consistency(_section(raw_config, 'consistency')),
        database=_parse_database(_section(raw_config, 'database')),
        logging=_parse_logging(_section(raw_config, 'logging')),
    )


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _positive_int(data: Dict, key: str, path: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{key}' in {path} must be a positive integer")
    return value


def _parse_enum(enum_cls, value, key: str, path: str):
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    try:
        return enum_cls(value.lower())
    except ValueError:
        valid = [member.value for member in enum_cls]
        raise ValueError(f"'{key}' in {path} must be one of: {valid}")


def _parse_storage(data: Dict) -> StorageConfig:
    _check_keys(data, {'bucket', 'region', 'url_mode', 'signed_url_expiry'}, 'storage')

    bucket = data.get('bucket')
    if not isinstance(bucket, str) or not bucket.strip():
        raise ValueError("Missing required 'bucket' in storage")

    region = data.get('region')
    if region is not None and not isinstance(region, str):
        raise ValueError("'region' in storage must be a string")

    return StorageConfig(
        bucket=bucket,
        region=region,
        url_mode=_parse_enum(UrlMode, data.get('url_mode', 'permanent'), 'url_mode', 'storage'),
        signed_url_expiry=_positive_int(data, 'signed_url_expiry', 'storage', 3600),
    )


def _parse_quota(data: Dict) -> QuotaConfig:
    _check_keys(
        data,
        {'default_max_bytes', 'default_max_objects', 'enforcement', 'max_file_size'},
        'quota',
    )
    return QuotaConfig(
        default_max_bytes=_positive_int(data, 'default_max_bytes', 'quota', DEFAULT_MAX_BYTES),
        default_max_objects=_positive_int(data, 'default_max_objects', 'quota', DEFAULT_MAX_OBJECTS),
        enforcement=_parse_enum(
            EnforcementMode, data.get('enforcement', 'best_effort'), 'enforcement', 'quota'
        ),
        max_file_size=_positive_int(data, 'max_file_size', 'quota', DEFAULT_MAX_FILE_SIZE),
    )


def _parse_consistency(data: Dict) -> ConsistencyConfig:
    _check_keys(data, {'compensate_failed_writes'}, 'consistency')
    compensate = data.get('compensate_failed_writes', False)
    if not isinstance(compensate, bool):
        raise ValueError("'compensate_failed_writes' in consistency must be a boolean")
    return ConsistencyConfig(compensate_failed_writes=compensate)


def _parse_database(data: Dict) -> DatabaseConfig:
    _check_keys(data, {'path'}, 'database')
    db_path = data.get('path', 'pockity.db')
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'path' in database must be a non-empty string")
    return DatabaseConfig(path=db_path)


def _parse_logging(data: Dict) -> LoggingConfig:
    _check_keys(data, {'level'}, 'logging')
    level = data.get('level', 'INFO')
    if not isinstance(level, str):
        raise ValueError("'level' in logging must be a string")
    return LoggingConfig(level=level.upper())
