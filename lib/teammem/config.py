"""Team memory configuration - schema, presets and loading"""

import json
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .constants import BackendTag, Defaults


class StorageMode(Enum):
    CENTRALIZED = "centralized"
    DECENTRALIZED = "decentralized"
    HYBRID = "hybrid"


@dataclass
class StorageConfig:
    """Which backends to build and how to route between them."""
    primary: str = BackendTag.CACHE
    fallback: Optional[str] = BackendTag.FILE
    redis_url: str = Defaults.REDIS_URL
    redis_prefix: str = "teammem:"
    redis_retries: int = 5
    base_path: str = Defaults.STORAGE_PATH
    content_path: Optional[str] = None
    reference_backend: Optional[str] = None
    enable_cache: bool = True
    timeout: float = Defaults.BACKEND_TIMEOUT_SECONDS
    max_workers: int = Defaults.MAX_WORKERS
    replicate: bool = True

    def __post_init__(self):
        for name in ("primary", "fallback", "reference_backend"):
            tag = getattr(self, name)
            if tag is not None and tag not in BackendTag.ALL:
                raise ValueError(f"Unknown {name} backend: {tag}")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.redis_retries < 1:
            raise ValueError("redis_retries must be at least 1")

    @property
    def backend_tags(self):
        tags = [self.primary]
        if self.fallback and self.fallback not in tags:
            tags.append(self.fallback)
        if self.reference_backend and self.reference_backend not in tags:
            tags.append(self.reference_backend)
        if BackendTag.CONTENT in tags and not any(
                t in tags for t in (BackendTag.CACHE, BackendTag.FILE, BackendTag.MEMORY)):
            # references to content-addressed blobs need a key-addressed home
            tags.append(BackendTag.FILE)
        return tags

    @property
    def resolved_content_path(self) -> str:
        return self.content_path or str(Path(self.base_path) / "content")

    @classmethod
    def preset(cls, mode: StorageMode, **overrides) -> 'StorageConfig':
        """Backend routing presets.

        centralized: cache with file fallback
        decentralized: content store with file fallback
        hybrid: cache with content store fallback
        """
        routes = {
            StorageMode.CENTRALIZED: (BackendTag.CACHE, BackendTag.FILE),
            StorageMode.DECENTRALIZED: (BackendTag.CONTENT, BackendTag.FILE),
            StorageMode.HYBRID: (BackendTag.CACHE, BackendTag.CONTENT),
        }
        primary, fallback = routes[StorageMode(mode)]
        return cls(**{"primary": primary, "fallback": fallback, **overrides})


@dataclass
class TeamMemoryConfig:
    """Complete team memory configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    conflict_window: float = Defaults.CONFLICT_WINDOW_SECONDS
    sync_interval: float = Defaults.SYNC_INTERVAL_SECONDS
    sync_workers: int = 4
    mastery_threshold: float = Defaults.MASTERY_THRESHOLD
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self):
        if self.conflict_window < 0:
            raise ValueError("conflict_window must be >= 0")
        if self.sync_interval < 0:
            raise ValueError("sync_interval must be >= 0 (0 disables automatic sync)")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TeamMemoryConfig':
        data = dict(data or {})
        storage_data = dict(data.pop("storage", {}) or {})
        mode = storage_data.pop("mode", None)
        storage_fields = {f.name for f in fields(StorageConfig)}
        storage_kwargs = {k: v for k, v in storage_data.items() if k in storage_fields}
        storage = (StorageConfig.preset(StorageMode(mode), **storage_kwargs)
                   if mode else StorageConfig(**storage_kwargs))

        top_fields = {f.name for f in fields(cls)} - {"storage"}
        return cls(storage=storage, **{k: v for k, v in data.items() if k in top_fields})

    @classmethod
    def load(cls, path: str) -> 'TeamMemoryConfig':
        """Load config from a YAML or JSON file (chosen by extension)."""
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must hold a mapping: {config_path}")
        return cls.from_dict(data)

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> 'TeamMemoryConfig':
        """Override settings from TEAMMEM_* environment variables."""
        env = os.environ if environ is None else environ
        storage = self.storage

        redis_url = env.get("TEAMMEM_REDIS_URL") or env.get("REDIS_URL")
        if redis_url:
            storage.redis_url = redis_url
        if env.get("TEAMMEM_STORAGE_PATH"):
            storage.base_path = env["TEAMMEM_STORAGE_PATH"]
        if env.get("TEAMMEM_PRIMARY"):
            storage.primary = env["TEAMMEM_PRIMARY"]
        if "TEAMMEM_FALLBACK" in env:
            storage.fallback = env["TEAMMEM_FALLBACK"] or None
        if env.get("TEAMMEM_BACKEND_TIMEOUT"):
            storage.timeout = float(env["TEAMMEM_BACKEND_TIMEOUT"])
        if env.get("TEAMMEM_SYNC_INTERVAL"):
            self.sync_interval = float(env["TEAMMEM_SYNC_INTERVAL"])
        if env.get("TEAMMEM_CONFLICT_WINDOW"):
            self.conflict_window = float(env["TEAMMEM_CONFLICT_WINDOW"])
        if env.get("TEAMMEM_LOG_LEVEL"):
            self.log_level = env["TEAMMEM_LOG_LEVEL"]

        storage.__post_init__()
        self.__post_init__()
        return self

    @classmethod
    def from_env(cls, path: Optional[str] = None,
                 environ: Optional[Mapping[str, str]] = None) -> 'TeamMemoryConfig':
        """File config (if any, or TEAMMEM_CONFIG) with environment overrides."""
        env = os.environ if environ is None else environ
        path = path or env.get("TEAMMEM_CONFIG")
        config = cls.load(path) if path else cls()
        return config.apply_env(env)


def create_default_config() -> Dict:
    """Default teammem.yaml content."""
    return {
        "storage": {
            "mode": "centralized",
            "redis_url": Defaults.REDIS_URL,
            "base_path": Defaults.STORAGE_PATH,
            "enable_cache": True,
            "timeout": Defaults.BACKEND_TIMEOUT_SECONDS,
            "replicate": True,
        },
        "conflict_window": Defaults.CONFLICT_WINDOW_SECONDS,
        "sync_interval": Defaults.SYNC_INTERVAL_SECONDS,
        "sync_workers": 4,
        "log_level": "INFO",
        "log_json": False,
    }
