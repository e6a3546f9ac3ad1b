"""
Binance WebSocket trade feed.

Streams spot trades for the tracked assets over one combined Binance
stream and hands each price to a callback as ``(asset, price, timestamp)``.
Timestamps are taken from a monotonic clock on receipt so they share a
clock with the engine's velocity windows.

The feed runs in a daemon thread and reconnects on its own after a close
or error. The callback must be cheap; it is called on the socket thread.

Example:
    feed = BinanceFeed([Asset.BTC, Asset.ETH], on_price=engine.record_price)
    feed.start()
    ...
    feed.stop()
"""
import json
import logging
import threading
import time
from typing import Callable, Iterable, Optional

import websocket

from ..arb.models import Asset
from ..config import BINANCE_WS_URL

logger = logging.getLogger(__name__)

PriceCallback = Callable[[Asset, float, float], object]

RECONNECT_DELAY_SECONDS = 3.0


def build_stream_url(assets: Iterable[Asset], base_url: str = BINANCE_WS_URL) -> str:
    """Combined trade stream URL, e.g. ``.../stream?streams=btcusdt@trade/ethusdt@trade``."""
    streams = "/".join(f"{asset.binance_symbol.lower()}@trade" for asset in assets)
    return f"{base_url.rstrip('/')}/stream?streams={streams}"


def parse_trade(message: str) -> Optional[tuple[Asset, float]]:
    """
    Extract (asset, price) from a trade message.

    Accepts both combined-stream envelopes ({"stream": ..., "data": {...}})
    and raw trade payloads. Returns None for anything else.
    """
    try:
        data = json.loads(message)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    if "data" in data and isinstance(data["data"], dict):
        data = data["data"]

    asset = Asset.from_symbol(data.get("s", ""))
    if asset is None:
        return None
    try:
        price = float(data.get("p", 0))
    except (TypeError, ValueError):
        return None
    if price <= 0:
        return None
    return asset, price


class BinanceFeed:
    """
    Real-time trade prices from Binance for a set of assets.

    Attributes:
        updates_received: Trade messages delivered to the callback.
        connection_errors: Socket errors seen since start.
        reconnects: Connections opened after the first one.
    """

    def __init__(
        self,
        assets: Iterable[Asset],
        on_price: PriceCallback,
        base_url: str = BINANCE_WS_URL,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.assets = list(assets)
        self.on_price = on_price
        self.url = build_stream_url(self.assets, base_url)
        self.reconnect_delay = reconnect_delay
        self._clock = clock

        self.ws: Optional[websocket.WebSocketApp] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.updates_received = 0
        self.connection_errors = 0
        self.reconnects = 0
        self.last_update_time: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def handle_message(self, message: str) -> bool:
        """Parse one message and forward the trade. Returns True if forwarded."""
        trade = parse_trade(message)
        if trade is None:
            return False
        asset, price = trade
        now = self._clock()
        try:
            self.on_price(asset, price, now)
        except Exception as e:
            logger.error(f"Price callback failed for {asset}: {e}", exc_info=True)
            return False
        self.updates_received += 1
        self.last_update_time = now
        return True

    def _on_message(self, ws, message):
        self.handle_message(message)

    def _on_error(self, ws, error):
        self.connection_errors += 1
        logger.warning(f"Binance WebSocket error: {error}")

    def _on_close(self, ws, close_status_code, close_msg):
        logger.info(f"Binance WebSocket closed: {close_status_code} - {close_msg}")

    def _on_open(self, ws):
        logger.info(f"Connected to Binance feed for {', '.join(str(a) for a in self.assets)}")

    def _run(self) -> None:
        first = True
        while not self._stop_event.is_set():
            if not first:
                self.reconnects += 1
            first = False

            self.ws = websocket.WebSocketApp(
                self.url,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
                on_open=self._on_open,
            )
            try:
                self.ws.run_forever(ping_interval=20, ping_timeout=10)
            except Exception as e:
                self.connection_errors += 1
                logger.error(f"Binance feed crashed: {e}", exc_info=True)

            if self._stop_event.wait(self.reconnect_delay):
                break
            logger.info("Reconnecting to Binance feed")

    def start(self) -> None:
        """Start the feed thread (no-op if already running)."""
        if self.is_running:
            logger.debug("Binance feed already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="binance-feed", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the feed and close the socket."""
        self._stop_event.set()
        if self.ws is not None:
            self.ws.close()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        logger.info("Binance feed stopped")

    def is_healthy(self, max_age_seconds: float = 10.0) -> bool:
        """True if a trade arrived within ``max_age_seconds``."""
        if self.last_update_time is None:
            return False
        return self._clock() - self.last_update_time < max_age_seconds

    def get_stats(self) -> dict:
        return {
            "running": self.is_running,
            "url": self.url,
            "updates_received": self.updates_received,
            "connection_errors": self.connection_errors,
            "reconnects": self.reconnects,
            "healthy": self.is_healthy(),
        }
