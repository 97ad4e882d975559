"""
Pulse - Collector Module
Polling drivers and the remote sources they poll (price, draw status).
"""

from .poller import PollingDriver, DriverState, PollOutcome
from .price_fetcher import fetch_token_pairs, read_dex_metrics
from .draw_fetcher import fetch_draw_status, parse_draw_status, parse_instant_ms

__all__ = [
    "PollingDriver", "DriverState", "PollOutcome",
    "fetch_token_pairs", "read_dex_metrics",
    "fetch_draw_status", "parse_draw_status", "parse_instant_ms",
]
