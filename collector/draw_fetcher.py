"""
Draw Status Fetcher

Payload (the live draw endpoint):
    {"draw": {"closesAt": "2026-01-05T21:00:00.000Z", "status": "OPEN",
              "dayNumber": 9, "dayTotal": 7000, ...}}

closesAt may come without a zone designator; such values are UTC, never
host-local time.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from core.errors import PayloadError
from core.models import DrawPhase, DrawStatus

logger = logging.getLogger("draw_fetcher")

UTC = timezone.utc
_DRAW_TIMEOUT_SECONDS = 5.5


def parse_instant_ms(text: Any) -> Optional[int]:
    """ISO-8601 instant to epoch ms. Zone-less input is read as UTC. None if unreadable."""
    if not isinstance(text, str):
        return None
    s = text.strip()
    if not s:
        return None
    if s[-1] in "Zz":
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def parse_draw_status(payload: Any) -> DrawStatus:
    if not isinstance(payload, dict):
        raise PayloadError("draw payload is not an object")
    draw = payload.get("draw", payload)
    if not isinstance(draw, dict):
        raise PayloadError("draw payload carries no draw")

    closes_at = draw.get("closesAt")
    if not isinstance(closes_at, str) or not closes_at.strip():
        raise PayloadError("draw payload is missing closesAt")
    closes_at_ms = parse_instant_ms(closes_at)
    if closes_at_ms is None:
        raise PayloadError(f"unreadable closesAt: {closes_at!r}")

    status = draw.get("status")
    if not isinstance(status, str) or not status.strip():
        raise PayloadError("draw payload is missing status")
    try:
        phase = DrawPhase(status.strip().upper())
    except ValueError as e:
        raise PayloadError(f"unknown draw status: {status!r}") from e

    return DrawStatus(
        closes_at_ms=closes_at_ms,
        phase=phase,
        day_number=_optional_int(draw.get("dayNumber")),
        day_total=_optional_int(draw.get("dayTotal")),
    )


async def fetch_draw_status(url: str, client: Optional[httpx.AsyncClient] = None) -> Any:
    """Raw draw-status payload. Transport errors propagate."""
    if client is not None:
        response = await client.get(url, headers={"Cache-Control": "no-store"})
        response.raise_for_status()
        return response.json()

    async with httpx.AsyncClient(timeout=_DRAW_TIMEOUT_SECONDS, follow_redirects=True) as own_client:
        response = await own_client.get(url, headers={"Cache-Control": "no-store"})
        response.raise_for_status()
        return response.json()
