from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger as log

from hlwatch.core.errors import TransientFetchError


class HyperliquidInfoClient:
    """
    Async client for the read-only Hyperliquid ``/info`` endpoint.

    Every failure (connection error, timeout, non-200 status, unexpected body)
    surfaces as TransientFetchError so callers can abort their cycle and retry
    on the next tick.
    """

    def __init__(
        self,
        base_url: str = "https://api.hyperliquid.xyz",
        timeout_sec: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None

    async def start(self) -> None:
        if not self.session:
            conn = aiohttp.TCPConnector(limit=10, ttl_dns_cache=300, keepalive_timeout=60)
            self.session = aiohttp.ClientSession(
                connector=conn,
                headers={"Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
            )
            self._owns_session = True

    async def stop(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def _post_info(self, payload: Dict[str, Any]) -> Any:
        if not self.session:
            await self.start()
        request_type = str(payload.get("type"))
        url = f"{self.base_url}/info"
        try:
            async with self.session.post(url, json=payload) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise TransientFetchError(request_type, f"HTTP {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransientFetchError(request_type, repr(e)) from e

    async def fetch_markets(self) -> Dict[str, Dict[str, Any]]:
        """Return market metadata keyed by asset name."""
        data = await self._post_info({"type": "metaAndAssetCtxs"})
        markets = parse_universe(data)
        log.debug(f"Fetched metadata for {len(markets)} markets")
        return markets

    async def fetch_user_fills(self, address: str) -> List[Dict[str, Any]]:
        data = await self._post_info({"type": "userFills", "user": address})
        if not isinstance(data, list):
            raise TransientFetchError("userFills", f"expected a list, got {type(data).__name__}")
        return data

    async def fetch_clearinghouse_state(self, address: str) -> Dict[str, Any]:
        data = await self._post_info({"type": "clearinghouseState", "user": address})
        if not isinstance(data, dict) or not isinstance(data.get("assetPositions"), list):
            raise TransientFetchError("clearinghouseState", "response has no assetPositions list")
        return data


def parse_universe(data: Any) -> Dict[str, Dict[str, Any]]:
    """Map ``metaAndAssetCtxs`` output to ``{name: meta}``.

    The live API answers ``[meta, assetCtxs]``; a bare ``meta`` object is accepted too.
    """
    meta = data[0] if isinstance(data, list) and data else data
    if not isinstance(meta, dict) or not isinstance(meta.get("universe"), list):
        raise TransientFetchError("metaAndAssetCtxs", "response has no universe list")
    return {
        str(market["name"]): market
        for market in meta["universe"]
        if isinstance(market, dict) and market.get("name")
    }
