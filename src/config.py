"""Configuration management for the Polymarket crypto arbitrage bot."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

LOGS_DIR = PROJECT_ROOT / "logs"
LOGS_DIR.mkdir(parents=True, exist_ok=True)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Polymarket credentials
POLYMARKET_PRIVATE_KEY = os.getenv("POLYMARKET_PRIVATE_KEY", "") or os.getenv("PRIVATE_KEY", "")
POLYMARKET_FUNDER = os.getenv("POLYMARKET_FUNDER", "") or os.getenv("FUNDER_ADDRESS", "")

# =============================================================================
# STRATEGY
# =============================================================================

# "velocity" (reactive, 3-5s moves) or "edge" (interval change + probability model)
EVALUATION_MODE = os.getenv("EVALUATION_MODE", "velocity").lower()

# Edge mode toggles
USE_MOMENTUM = _env_bool("USE_MOMENTUM", True)
USE_EDGE_CHECK = _env_bool("USE_EDGE_CHECK", True)

# Entry filters (momentum follows USE_MOMENTUM)
ENABLE_ORDERBOOK_FILTER = _env_bool("ENABLE_ORDERBOOK_FILTER", True)
ENABLE_VOLUME_FILTER = _env_bool("ENABLE_VOLUME_FILTER", False)
ENABLE_TIME_FILTER = _env_bool("ENABLE_TIME_FILTER", True)

# Assets to watch
ASSETS = [a.strip().lower() for a in os.getenv("ASSETS", "btc,eth,sol,xrp").split(",") if a.strip()]

# Position sizing (USD per trade)
MAX_POSITION_USD = float(os.getenv("MAX_POSITION_USD", "10"))
MIN_POSITION_USD = float(os.getenv("MIN_POSITION_USD", "1"))

# Exit profile: "standard" (TP 15% / SL 10%) or "conservative" (TP 8% / SL 6%)
EXIT_PROFILE = os.getenv("EXIT_PROFILE", "standard").lower()

# =============================================================================
# SCHEDULING
# =============================================================================

# Evaluation tick (milliseconds)
CHECK_INTERVAL_MS = int(os.getenv("CHECK_INTERVAL_MS", "100"))

# Market quote refresh (seconds)
QUOTE_REFRESH_SECONDS = float(os.getenv("QUOTE_REFRESH_SECONDS", "3"))

# Status report cadence (seconds)
STATUS_INTERVAL_SECONDS = float(os.getenv("STATUS_INTERVAL_SECONDS", "300"))

# Minimum time between trades (seconds)
MIN_TRADE_INTERVAL_SECONDS = float(os.getenv("MIN_TRADE_INTERVAL_SECONDS", "120"))

# Kill switch file (create this file to halt all trading)
KILL_SWITCH_FILE = PROJECT_ROOT / ".kill_switch"

# =============================================================================
# NOTIFICATIONS
# =============================================================================

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "")

# =============================================================================
# API ENDPOINTS
# =============================================================================

CLOB_BASE_URL = "https://clob.polymarket.com"
GAMMA_API_URL = "https://gamma-api.polymarket.com"
BINANCE_WS_URL = "wss://stream.binance.com:9443"
TELEGRAM_API_URL = "https://api.telegram.org"

# Chain configuration (Polygon)
CHAIN_ID = 137
