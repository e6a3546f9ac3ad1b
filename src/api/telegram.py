"""
Telegram notifications for the arbitrage bot.

Fire-and-forget: a failed send is logged and dropped so the bot never
stops because of chat delivery. The notifier is disabled when either the
bot token or the chat id is missing.
"""
import html
import logging
from typing import Optional

import requests

from ..config import TELEGRAM_API_URL, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """
    Sends HTML-formatted messages to one Telegram chat.

    Example:
        notifier = TelegramNotifier()
        notifier.notify_startup("PAPER")
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
    ):
        self.bot_token = TELEGRAM_BOT_TOKEN if bot_token is None else bot_token
        self.chat_id = TELEGRAM_CHAT_ID if chat_id is None else chat_id
        self.session = session or requests.Session()
        self.timeout = timeout
        self.enabled = bool(self.bot_token and self.chat_id)
        self.sent = 0
        self.failed = 0

        if not self.enabled:
            logger.info("Telegram notifications disabled (TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID not set)")

    def send(self, message: str) -> bool:
        """
        Send a message.

        Returns:
            True if Telegram accepted it; False if disabled or failed.
        """
        if not self.enabled:
            return False

        url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": message, "parse_mode": "HTML"}
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.failed += 1
            logger.warning(f"Failed to send Telegram notification: {e}")
            return False

        self.sent += 1
        return True

    def notify_startup(self, mode: str, assets: Optional[list[str]] = None) -> bool:
        watched = ", ".join(assets) if assets else "BTC, ETH, SOL, XRP"
        return self.send(
            f"🟢 <b>Crypto Arb Bot Started</b>\n\nMode: {mode}\n"
            f"Monitoring: {watched}\n\nWaiting for signals..."
        )

    def notify_signal(self, asset: str, change_pct: float, direction: str, confidence: int) -> bool:
        return self.send(
            f"🎯 <b>Signal Detected</b>\n\nAsset: {asset}\nMove: {change_pct:+.3f}%\n"
            f"Direction: {direction}\nConfidence: {confidence}"
        )

    def notify_blocked(self, asset: str, reason: str) -> bool:
        return self.send(
            f"🛑 <b>Trade Blocked</b>\n\nAsset: {asset}\nReason: {html.escape(reason)}"
        )

    def notify_trade(
        self,
        asset: str,
        direction: str,
        entry_price: float,
        size_usd: float,
        market: str,
        is_paper: bool,
    ) -> bool:
        header = "📝 <b>PAPER Trade Executed</b>" if is_paper else "✅ <b>LIVE Trade Executed</b>"
        return self.send(
            f"{header}\n\nAsset: {asset}\nDirection: {direction}\n"
            f"Entry: {entry_price * 100:.2f}¢\nSize: ${size_usd:.2f}\nMarket: {html.escape(market)}"
        )

    def notify_failed(self, asset: str, error: str) -> bool:
        return self.send(f"❌ <b>Trade Failed</b>\n\nAsset: {asset}\nError: {html.escape(error)}")

    def notify_exit(self, token_id: str, reason: str, pnl_pct: float) -> bool:
        return self.send(
            f"🚪 <b>Position Closed</b>\n\nToken: {token_id[:16]}...\n"
            f"Reason: {reason}\nP&amp;L: {pnl_pct:+.2f}%"
        )

    def notify_status(self, total_trades: int, open_positions: int, pnl_usd: float, mode: str) -> bool:
        return self.send(
            f"📊 <b>Status Update</b>\n\nMode: {mode}\nTotal Trades: {total_trades}\n"
            f"Open Positions: {open_positions}\nP&amp;L: ${pnl_usd:.2f}"
        )

    def notify_status_analysis(self, analysis: str) -> bool:
        """Send a status report as preformatted text."""
        if not self.enabled:
            return False
        return self.send(f"<pre>{html.escape(analysis)}</pre>")
