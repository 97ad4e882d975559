"""
Price Fetcher - DexScreener token endpoint.
URL: https://api.dexscreener.com/latest/dex/tokens/{token}

The payload lists every pair trading the token. We keep the pair with a
finite USD price, preferring Solana pairs and then deeper liquidity.
"""

import logging
import math
from typing import Any, Optional

import httpx

from core.errors import PayloadError
from core.models import PriceMetrics

logger = logging.getLogger("price_fetcher")

DEXSCREENER_TOKENS_URL = "https://api.dexscreener.com/latest/dex/tokens"
PREFERRED_CHAIN = "solana"
_PRICE_TIMEOUT_SECONDS = 10.0


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def _chain_ok(pair: dict) -> bool:
    return str(pair.get("chainId") or "").lower() == PREFERRED_CHAIN


def _liquidity_usd(pair: dict) -> float:
    liquidity = pair.get("liquidity")
    if not isinstance(liquidity, dict):
        return 0.0
    return _finite(liquidity.get("usd")) or 0.0


def read_dex_metrics(payload: Any) -> PriceMetrics:
    """Pick the best pair and return its metrics; PayloadError if there is no usable price."""
    if not isinstance(payload, dict):
        raise PayloadError("price payload is not an object")
    pairs = payload.get("pairs")
    if not isinstance(pairs, list) or not pairs:
        raise PayloadError("price payload has no pairs")

    best = None
    for pair in pairs:
        if not isinstance(pair, dict) or _finite(pair.get("priceUsd")) is None:
            continue
        if best is None:
            best = pair
            continue
        if (_chain_ok(pair) and not _chain_ok(best)) or _liquidity_usd(pair) > _liquidity_usd(best):
            best = pair

    if best is None:
        raise PayloadError("no pair carries a finite priceUsd")

    change = best.get("priceChange")
    change_h1 = _finite(change.get("h1")) if isinstance(change, dict) else None
    return PriceMetrics(price_usd=_finite(best["priceUsd"]), change_h1=change_h1)


async def fetch_token_pairs(token: str, client: Optional[httpx.AsyncClient] = None) -> Any:
    """Raw DexScreener payload for a token. Transport errors propagate."""
    url = f"{DEXSCREENER_TOKENS_URL}/{token}"
    if client is not None:
        response = await client.get(url, headers={"Cache-Control": "no-store"})
        response.raise_for_status()
        return response.json()

    async with httpx.AsyncClient(timeout=_PRICE_TIMEOUT_SECONDS, follow_redirects=True) as own_client:
        response = await own_client.get(url, headers={"Cache-Control": "no-store"})
        response.raise_for_status()
        return response.json()
