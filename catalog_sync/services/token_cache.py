"""Bearer token caches for the marketplace client.

The client is handed a cache instance explicitly; nothing here is a process-wide
singleton. ``FileTokenCache`` survives restarts on a single host,
``RedisTokenCache`` shares one token between every worker host.
"""
from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Callable, Optional, Protocol

import redis

from catalog_sync.config import MARKETPLACE_SETTINGS
from catalog_sync.utils import get_logger

logger = get_logger(__name__)


class TokenCache(Protocol):
    def get(self) -> Optional[str]: ...
    def set(self, token: str, expires_in: int) -> None: ...


class FileTokenCache:
    def __init__(self, path: str | os.PathLike, *, margin_seconds: int = 30, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self.margin_seconds = margin_seconds
        self._clock = clock

    def get(self) -> Optional[str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning("Ignoring unreadable token cache", path=str(self.path))
            return None
        token = data.get("access_token")
        expires_at = data.get("expires_at")
        if not token or expires_at is None:
            return None
        if self._clock() >= float(expires_at) - self.margin_seconds:
            return None
        return str(token)

    def set(self, token: str, expires_in: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"access_token": token, "expires_at": self._clock() + int(expires_in)}),
            encoding="utf-8",
        )
        os.replace(tmp, self.path)


class RedisTokenCache:
    def __init__(self, client: "redis.Redis", *, key: str = "catalog_sync:bol_token", margin_seconds: int = 30):
        self._client = client
        self.key = key
        self.margin_seconds = margin_seconds

    def get(self) -> Optional[str]:
        value = self._client.get(self.key)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def set(self, token: str, expires_in: int) -> None:
        # Redis expiry already applies the safety margin.
        ttl = max(1, int(expires_in) - self.margin_seconds)
        self._client.set(self.key, token, ex=ttl)


def create_token_cache(settings: Optional[dict] = None) -> TokenCache:
    cfg = settings if settings is not None else MARKETPLACE_SETTINGS
    margin = int(cfg.get("token_expiry_margin_seconds", 30))
    if str(cfg.get("token_cache", "file")) == "redis":
        redis_url = str(cfg.get("redis_url", "redis://localhost:6379/0"))
        logger.info("Using redis token cache", url=redis_url)
        return RedisTokenCache(
            redis.from_url(redis_url),
            key=str(cfg.get("token_cache_key", "catalog_sync:bol_token")),
            margin_seconds=margin,
        )
    return FileTokenCache(str(cfg.get("token_cache_path", "./var/cache/bol_token.json")), margin_seconds=margin)


def check_redis_health(url: str, timeout: float = 2.0) -> bool:
    """Ping redis; used by the detailed health endpoint when the redis cache is active."""
    try:
        client = redis.from_url(url, socket_connect_timeout=timeout)
        client.ping()
        return True
    except redis.RedisError as e:
        logger.warning("Redis health check: Redis is unavailable", error=str(e))
        return False


__all__ = ["TokenCache", "FileTokenCache", "RedisTokenCache", "create_token_cache", "check_redis_health"]
