"""Marketplace HTTP client (aiohttp).

Handles the concerns handlers should never see: bearer token acquisition and
caching, vendor media types, and transport-level retries for throttling and
transient 5xx responses (honouring ``Retry-After``). Anything that still fails
is raised as ``RemoteAPIError`` carrying status, method, path and body.

Handlers are synchronous, so ``request`` drives the async implementation with
``asyncio.run``; it must not be called from inside a running event loop.
"""
from __future__ import annotations

import asyncio
import json as jsonlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional

import aiohttp

from catalog_sync.config import MARKETPLACE_SETTINGS
from catalog_sync.services.token_cache import TokenCache
from catalog_sync.utils import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class RemoteAPIError(RuntimeError):
    def __init__(self, status_code: int, method: str, path: str, body: str = ""):
        self.status_code = status_code
        self.method = method
        self.path = path
        self.body = body
        super().__init__(f"BOL API error {status_code} {method} {path}\n{body}")

    @property
    def retryable(self) -> bool:
        # status 0 = no response at all (connection reset, timeout)
        return self.status_code == 0 or self.status_code in RETRYABLE_STATUSES


@dataclass
class RawResponse:
    status: int
    text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    def retry_after_seconds(self) -> float | None:
        value = self.headers.get("Retry-After") or self.headers.get("retry-after")
        try:
            seconds = float(value) if value is not None else 0.0
        except ValueError:
            return None
        return seconds if seconds > 0 else None


class MarketplaceClient:
    def __init__(
        self,
        token_cache: TokenCache,
        settings: Optional[dict] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        cfg = dict(MARKETPLACE_SETTINGS)
        if settings:
            cfg.update(settings)
        self.settings = cfg
        self.api_base = str(cfg["api_base"]).rstrip("/")
        self.auth_base = str(cfg["auth_base"]).rstrip("/")
        self.token_cache = token_cache
        self.retries = int(cfg.get("retries", 3))
        self.retry_delay_ms = int(cfg.get("retry_delay_ms", 250))
        self.timeout = aiohttp.ClientTimeout(total=float(cfg.get("timeout_seconds", 30)))
        self._sleep = sleep

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
        accept: Optional[str] = None,
    ) -> Any:
        """Send one API call; returns parsed JSON (or raw text for non-JSON media types)."""
        return asyncio.run(self.request_async(method, path, json=json, params=params, accept=accept))

    async def request_async(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
        accept: Optional[str] = None,
    ) -> Any:
        method = method.upper()
        media_type = accept or str(self.settings["accept"])
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            token = await self._access_token(session)
            headers = {"Authorization": f"Bearer {token}", "Accept": media_type}
            kwargs: dict[str, Any] = {"headers": headers}
            if json is not None:
                headers["Content-Type"] = str(self.settings["accept"])
                kwargs["data"] = jsonlib.dumps(json)
            if params:
                kwargs["params"] = params

            url = f"{self.api_base}{path}"
            logger.debug("Marketplace request", method=method, url=url, has_json=json is not None)
            for attempt in range(self.retries + 1):
                try:
                    response = await self._send(session, method, url, **kwargs)
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.error("Marketplace transport failure", method=method, path=path, error=str(e))
                    raise RemoteAPIError(0, method, path, str(e)) from e

                if response.status < 400:
                    return self._parse(response, media_type)

                if response.status in RETRYABLE_STATUSES and attempt < self.retries:
                    wait = response.retry_after_seconds()
                    if wait is None:
                        wait = self.retry_delay_ms * (attempt + 1) / 1000.0
                    logger.warning(
                        "Marketplace transient error, retrying",
                        status_code=response.status,
                        attempt=attempt + 1,
                        sleep_seconds=wait,
                        path=path,
                    )
                    await self._sleep(wait)
                    continue

                logger.error(
                    "Marketplace API error",
                    method=method,
                    path=path,
                    status_code=response.status,
                    body=response.text[:500],
                )
                raise RemoteAPIError(response.status, method, path, response.text)
        raise AssertionError("unreachable: retry loop always returns or raises")  # pragma: no cover

    async def _access_token(self, session: aiohttp.ClientSession) -> str:
        cached = self.token_cache.get()
        if cached:
            return cached
        auth = aiohttp.BasicAuth(str(self.settings.get("client_id", "")), str(self.settings.get("client_secret", "")))
        url = f"{self.auth_base}/token"
        try:
            response = await self._send(
                session,
                "POST",
                url,
                headers={"Accept": "application/json"},
                data={"grant_type": "client_credentials"},
                auth=auth,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteAPIError(0, "POST", "/token", str(e)) from e
        if response.status >= 400:
            logger.error("Marketplace token request failed", status_code=response.status)
            raise RemoteAPIError(response.status, "POST", "/token", response.text)
        data = jsonlib.loads(response.text or "{}")
        if not data.get("access_token") or data.get("expires_in") is None:
            raise RuntimeError("Could not get marketplace access token")
        self.token_cache.set(str(data["access_token"]), int(data["expires_in"]))
        logger.info("Marketplace access token refreshed", expires_in=int(data["expires_in"]))
        return str(data["access_token"])

    async def _send(self, session: aiohttp.ClientSession, method: str, url: str, **kwargs: Any) -> RawResponse:
        async with session.request(method, url, **kwargs) as resp:
            text = await resp.text()
            return RawResponse(status=resp.status, text=text, headers=dict(resp.headers))

    @staticmethod
    def _parse(response: RawResponse, media_type: str) -> Any:
        if "json" not in media_type:
            return response.text
        if not response.text:
            return {}
        return jsonlib.loads(response.text)


__all__ = ["MarketplaceClient", "RemoteAPIError", "RawResponse", "RETRYABLE_STATUSES"]
