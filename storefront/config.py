"""
Configuration management for the storefront service.

Loads defaults from a YAML config file, then applies environment overrides
(a local .env file is honoured via python-dotenv).
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv

from storefront.cache_policy import DEFAULT_TTL_SECONDS, SEARCH_TTL_SECONDS

load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of storefront package)."""
    return Path(__file__).resolve().parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class StorefrontConfig:
    """Configuration for the storefront service."""

    # Database
    database_url: str = ""

    # Cache (Redis / Upstash)
    cache_enabled: bool = True
    cache_default_ttl: int = DEFAULT_TTL_SECONDS
    cache_search_ttl: int = SEARCH_TTL_SECONDS
    upstash_redis_url: str = ""
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_socket_timeout: float = 2.0

    # Server
    env: str = "development"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.env.lower() in ("production", "prod")

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "StorefrontConfig":
        """Load configuration from YAML file. Missing file means all defaults."""
        path = config_path or DEFAULT_CONFIG_PATH
        if not path.exists():
            return cls()

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        database_config = data.get('database', {})
        cache_config = data.get('cache', {})
        server_config = data.get('server', {})

        return cls(
            database_url=database_config.get('url', '') or '',
            cache_enabled=bool(cache_config.get('enabled', True)),
            cache_default_ttl=int(cache_config.get('default_ttl', DEFAULT_TTL_SECONDS)),
            cache_search_ttl=int(cache_config.get('search_ttl', SEARCH_TTL_SECONDS)),
            redis_host=cache_config.get('redis_host', 'localhost'),
            redis_port=int(cache_config.get('redis_port', 6379)),
            redis_db=int(cache_config.get('redis_db', 0)),
            redis_socket_timeout=float(cache_config.get('socket_timeout', 2.0)),
            env=server_config.get('env', 'development'),
            cors_origins=list(server_config.get('cors_origins', ["*"])),
        )

    def apply_env(self) -> "StorefrontConfig":
        """Override fields from environment variables, in place."""
        env = os.environ
        if env.get("DATABASE_URL"):
            self.database_url = env["DATABASE_URL"]
        if "CACHE_ENABLED" in env:
            self.cache_enabled = env["CACHE_ENABLED"].strip().lower() in _TRUTHY
        if env.get("CACHE_DEFAULT_TTL"):
            self.cache_default_ttl = int(env["CACHE_DEFAULT_TTL"])
        if env.get("CACHE_SEARCH_TTL"):
            self.cache_search_ttl = int(env["CACHE_SEARCH_TTL"])
        if env.get("UPSTASH_REDIS_URL"):
            self.upstash_redis_url = env["UPSTASH_REDIS_URL"]
        if env.get("REDIS_HOST"):
            self.redis_host = env["REDIS_HOST"]
        if env.get("REDIS_PORT"):
            self.redis_port = int(env["REDIS_PORT"])
        if env.get("REDIS_DB"):
            self.redis_db = int(env["REDIS_DB"])
        if env.get("REDIS_SOCKET_TIMEOUT"):
            self.redis_socket_timeout = float(env["REDIS_SOCKET_TIMEOUT"])
        if env.get("ENV"):
            self.env = env["ENV"]
        if env.get("CORS_ORIGINS"):
            self.cors_origins = [o.strip() for o in env["CORS_ORIGINS"].split(",") if o.strip()]
        return self


# Global config instance
_config: Optional[StorefrontConfig] = None


def get_config() -> StorefrontConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        override = os.getenv("STOREFRONT_CONFIG")
        path = Path(override) if override else None
        _config = StorefrontConfig.from_yaml(path).apply_env()
    return _config


def set_config(config: Optional[StorefrontConfig]) -> None:
    """Set the global configuration instance (None forces a reload)."""
    global _config
    _config = config
