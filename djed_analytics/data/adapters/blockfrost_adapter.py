"""
DJED ANALYTICS - Blockfrost Chain Data Adapter
Paginated and single-resource fetches with exponential backoff, rate-limit
awareness and a shared datum cache.
"""
import asyncio
import json
import aiohttp
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from djed_analytics.config.settings import get_settings
from djed_analytics.data.adapters.base import ChainDataAdapter
from djed_analytics.data.cache.datum_cache import DatumCache
from djed_analytics.exceptions import (
    ChainApiError,
    DecodeError,
    ConfigurationError,
    RateLimitError,
    ResourceNotFound,
    TransientError,
)
from djed_analytics.utils.helpers import to_ms
from djed_analytics.utils.logger import get_logger

logger = get_logger("blockfrost_adapter")

RETRYABLE_STATUSES = {500, 502, 503, 504}


class _Retry(Exception):
    """Internal signal: this attempt failed in a way worth retrying."""

    def __init__(self, reason: str, status: Optional[int] = None, wait: Optional[float] = None):
        super().__init__(reason)
        self.reason = reason
        self.status = status
        self.wait = wait


class BlockfrostAdapter(ChainDataAdapter):
    """Blockfrost REST adapter."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None,
                 datum_cache: Optional[DatumCache] = None):
        super().__init__(name="blockfrost")
        settings = get_settings()
        self.chain = settings.chain
        self.retry = settings.retry
        self.base_url = self.chain.blockfrost_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self.datum_cache = datum_cache or DatumCache()
        self._request_count = 0
        self._retry_count = 0

    async def connect(self) -> None:
        if self._session is not None:
            return
        if not self.chain.blockfrost_project_id:
            raise ConfigurationError("BLOCKFROST_PROJECT_ID is not set")
        timeout = aiohttp.ClientTimeout(total=self.chain.request_timeout_seconds)
        self._session = aiohttp.ClientSession(
            timeout=timeout,
            headers={"project_id": self.chain.blockfrost_project_id},
        )
        self._owns_session = True
        logger.info("blockfrost_adapter_connected", url=self.base_url, network=self.chain.network)

    async def disconnect(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None
        logger.info("blockfrost_adapter_disconnected", requests=self._request_count,
                    retries=self._retry_count)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int, rate_limited: bool, retry_after: Optional[float]) -> float:
        base = self.retry.rate_limit_backoff_base_seconds if rate_limited else self.retry.backoff_base_seconds
        wait = base * (2 ** attempt)
        if retry_after is not None:
            wait = max(wait, retry_after)
        return min(wait, self.retry.max_backoff_seconds)

    async def _attempt(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self._session.get(url, params=params) as resp:
                self._request_count += 1
                if resp.status == 404:
                    raise ResourceNotFound(path)
                if resp.status == 429:
                    retry_after = resp.headers.get("Retry-After")
                    raise _Retry(
                        "rate_limited", status=429,
                        wait=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    )
                if resp.status in RETRYABLE_STATUSES:
                    raise _Retry("server_error", status=resp.status)
                if resp.status >= 400:
                    body = await resp.text()
                    raise ChainApiError(f"{resp.status} from {path}: {body[:200]}", status=resp.status)
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise _Retry(f"transport_error: {type(e).__name__}") from e

        if not text or not text.strip():
            raise _Retry("empty_body", status=200)
        try:
            return json.loads(text)
        except ValueError as e:
            raise _Retry("malformed_body", status=200) from e

    async def fetch_one(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a resource, retrying 429 / 5xx / transport failures with exponential backoff."""
        if self._session is None:
            await self.connect()

        last: Optional[_Retry] = None
        for attempt in range(self.retry.max_retries):
            try:
                return await self._attempt(path, params)
            except _Retry as r:
                last = r
                if attempt < self.retry.max_retries - 1:
                    wait = self._backoff(attempt, r.status == 429, r.wait)
                    self._retry_count += 1
                    logger.warning("chain_request_retry", path=path, reason=r.reason,
                                   status=r.status, attempt=attempt + 1, wait_seconds=wait)
                    await asyncio.sleep(wait)

        logger.error("chain_request_failed", path=path, reason=last.reason if last else None,
                     attempts=self.retry.max_retries)
        error_cls = RateLimitError if last is not None and last.status == 429 else TransientError
        raise error_cls(
            f"{path} failed after {self.retry.max_retries} attempts ({last.reason if last else 'no attempts'})",
            status=last.status if last else None,
            attempts=self.retry.max_retries,
        )

    async def fetch_paginated(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        take_while: Optional[Callable[[Any], bool]] = None,
    ) -> List[Any]:
        items: List[Any] = []
        page = 1
        while True:
            page_params = dict(params or {})
            page_params.update({"page": page, "count": self.chain.page_size})
            batch = await self.fetch_one(path, page_params)
            if not batch:
                break
            for item in batch:
                if take_while is not None and not take_while(item):
                    logger.debug("pagination_stopped_early", path=path, page=page, items=len(items))
                    return items
                items.append(item)
            logger.debug("page_fetched", path=path, page=page, size=len(batch))
            page += 1
            if self.chain.page_delay_seconds > 0:
                await asyncio.sleep(self.chain.page_delay_seconds)
        return items

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def asset_transactions(self, asset: str, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Transactions that touched an asset, newest first.

        With `since`, only transactions in blocks at or after that instant
        are returned and pagination stops at the first older one.
        """
        path = f"/assets/{asset}/transactions"
        if since is None:
            return await self.fetch_paginated(path, {"order": "desc"})
        cutoff_seconds = to_ms(since) // 1000
        return await self.fetch_paginated(
            path, {"order": "desc"},
            take_while=lambda tx: tx.get("block_time") is None or int(tx["block_time"]) >= cutoff_seconds,
        )

    async def transaction_utxos(self, tx_hash: str) -> Dict[str, Any]:
        return await self.fetch_one(f"/txs/{tx_hash}/utxos")

    async def transaction(self, tx_hash: str) -> Dict[str, Any]:
        return await self.fetch_one(f"/txs/{tx_hash}")

    async def datum(self, datum_hash: str) -> Dict[str, Any]:
        """JSON value of a datum, served from cache when already seen."""
        cached = self.datum_cache.get(datum_hash)
        if cached is not None:
            return cached
        body = await self.fetch_one(f"/scripts/datum/{datum_hash}")
        value = body.get("json_value") if isinstance(body, dict) else None
        if value is None:
            raise DecodeError(f"datum {datum_hash} has no json_value")
        self.datum_cache.put(datum_hash, value)
        return value

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "requests": self._request_count,
            "retries": self._retry_count,
            "datum_cache": self.datum_cache.stats,
        }
