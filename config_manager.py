"""
Configuration for The Imaginator.

Settings live in a JSON file (``config.json`` by default) with one object per
section. Anything missing falls back to the dataclass defaults below; a file
that cannot be read or fails validation is ignored as a whole.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from data_models import ExportFormat, ImaginatorError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
DEFAULT_CONFIG_PATH = "config.json"
RETRY_STRATEGIES = ("exponential", "linear", "fixed")


class ConfigError(ImaginatorError):
    """Raised when required configuration is missing or invalid"""
    pass


def _require(condition: bool, message: str):
    if not condition:
        raise ValueError(message)


@dataclass
class ApiConfig:
    """Gemini model, sampling, retry and cache settings"""
    model: str = "gemini-2.5-flash"
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout: float = 300.0
    enable_cache: bool = True
    cache_ttl: float = 3600.0
    max_cache_size: int = 1000
    rate_limit_delay: float = 1.0
    max_requests_per_minute: int = 60
    max_retries: int = 3
    retry_delay: float = 2.0
    retry_strategy: str = "exponential"

    def __post_init__(self):
        _require(0.0 <= self.temperature <= 2.0,
                 f"Temperature must be between 0.0 and 2.0, got {self.temperature}")
        _require(self.max_tokens > 0, f"max_tokens must be positive, got {self.max_tokens}")
        _require(self.timeout > 0, f"api timeout must be positive, got {self.timeout}")
        _require(self.max_cache_size > 0, f"max_cache_size must be positive, got {self.max_cache_size}")
        _require(self.rate_limit_delay >= 0, f"rate_limit_delay must not be negative, got {self.rate_limit_delay}")
        _require(self.max_requests_per_minute > 0,
                 f"max_requests_per_minute must be positive, got {self.max_requests_per_minute}")
        _require(self.max_retries >= 0, f"max_retries must not be negative, got {self.max_retries}")
        _require(self.retry_strategy in RETRY_STRATEGIES,
                 f"retry_strategy must be one of {RETRY_STRATEGIES}, got {self.retry_strategy!r}")


@dataclass
class EngineConfig:
    """Decision engine timing and persistence behaviour"""
    provider_timeout: float = 120.0
    history_timeout: float = 10.0
    persist_after_each_decision: bool = True

    def __post_init__(self):
        _require(self.provider_timeout > 0, f"provider_timeout must be positive, got {self.provider_timeout}")
        _require(self.history_timeout > 0, f"history_timeout must be positive, got {self.history_timeout}")


@dataclass
class StorageConfig:
    data_dir: str = "stories"
    history_enabled: bool = True


@dataclass
class ExportConfig:
    default_format: str = ExportFormat.SCREENPLAY.value
    output_dir: str = "exports"
    timeout: float = 300.0

    def __post_init__(self):
        formats = [f.value for f in ExportFormat]
        _require(self.default_format in formats, f"default_format must be one of {formats}")
        _require(self.timeout > 0, f"export timeout must be positive, got {self.timeout}")


@dataclass
class UIConfig:
    """Console presentation switches"""
    show_progress: bool = True
    color_output: bool = True
    verbose_logging: bool = False


@dataclass
class AppConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    ui: UIConfig = field(default_factory=UIConfig)


SECTION_TYPES = {
    "api": ApiConfig,
    "engine": EngineConfig,
    "storage": StorageConfig,
    "export": ExportConfig,
    "ui": UIConfig,
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay nested dictionaries without mutating either input"""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def build_config(data: Dict[str, Any]) -> AppConfig:
    """Build a validated config; raises ValueError or TypeError on bad sections"""
    merged = _deep_merge(asdict(AppConfig()), data)
    return AppConfig(**{name: kind(**merged[name]) for name, kind in SECTION_TYPES.items()})


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Read the user's overrides; None when the file is absent or unusable"""
    if not path.exists():
        logger.info(f"No config file at {path}, using defaults")
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring malformed config {path}: {e}")
        return None
    except OSError as e:
        logger.warning(f"Cannot read config {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: top level must be an object")
        return None
    return data


class ConfigManager:
    """Loads, caches, validates and saves application configuration"""

    def __init__(self):
        # resolved path -> (mtime when loaded, config)
        self._loaded: Dict[str, tuple] = {}

    def load_config(self, config_path: PathLike = DEFAULT_CONFIG_PATH) -> AppConfig:
        """Load configuration, reusing the cached copy until the file changes"""
        path = Path(config_path)
        key = str(path.resolve())
        mtime = path.stat().st_mtime if path.exists() else 0.0

        cached = self._loaded.get(key)
        if cached and mtime <= cached[0]:
            return cached[1]

        overrides = _read_json(path) or {}
        try:
            config = build_config(overrides)
        except (ValueError, TypeError):
            for problem in self.validate_config(overrides):
                logger.error(f"Invalid configuration in {path}: {problem}")
            logger.error(f"Using default configuration instead of {path}")
            return AppConfig()
        if overrides:
            logger.info(f"Configuration loaded from {path}")

        self._loaded[key] = (mtime, config)
        return config

    def save_config(self, config: AppConfig, config_path: PathLike = DEFAULT_CONFIG_PATH) -> bool:
        """Write configuration atomically, keeping the previous file as <name>.backup"""
        path = Path(config_path)
        if path.exists():
            try:
                path.with_name(path.name + ".backup").write_bytes(path.read_bytes())
            except OSError as e:
                logger.warning(f"Could not back up {path}: {e}")

        staging = path.with_name(path.name + ".tmp")
        try:
            staging.write_text(json.dumps(asdict(config), indent=2, ensure_ascii=False), encoding="utf-8")
            staging.replace(path)
        except OSError as e:
            logger.error(f"Could not save configuration to {path}: {e}")
            return False
        logger.info(f"Configuration written to {path}")
        return True

    def validate_config(self, config_dict: Dict[str, Any]) -> List[str]:
        """List every problem in a configuration dictionary"""
        problems = [f"Unknown config section: {name}" for name in config_dict if name not in SECTION_TYPES]
        for name, kind in SECTION_TYPES.items():
            try:
                kind(**config_dict.get(name, {}))
            except (ValueError, TypeError) as e:
                problems.append(f"{name} config error: {e}")
        return problems


config_manager = ConfigManager()
