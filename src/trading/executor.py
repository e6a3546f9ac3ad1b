"""
Order Execution

Turns arbitrage signals into CLOB orders. Two executors share one interface:

- PaperExecutor: fills every valid order at the requested price (default)
- LiveExecutor: signs and posts orders through py-clob-client

Orders are BUY / FOK (fill or kill) by default so a stale price never
leaves a resting order behind.

Safety Features:
- Retry with exponential backoff (3 attempts)
- Kill switch file check (.kill_switch) before every live order
- Price bounds (0.01-0.99) and size validation
- Slippage warning logging (>1%)

IMPORTANT: Live trading requires credentials in the .env file:
- POLYMARKET_PRIVATE_KEY: Your wallet private key
- POLYMARKET_FUNDER: Your proxy wallet address (holds funds)
"""
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from tenacity import (
    RetryError,
    retry,
    stop_after_attempt,
    wait_exponential,
)

from ..arb.models import Signal
from ..config import (
    CHAIN_ID,
    CLOB_BASE_URL,
    KILL_SWITCH_FILE,
    POLYMARKET_FUNDER,
    POLYMARKET_PRIVATE_KEY,
)

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRY_ATTEMPTS = 3
RETRY_MIN_WAIT = 0.5  # seconds
RETRY_MAX_WAIT = 2.0  # seconds

# Slippage threshold for warnings
SLIPPAGE_WARNING_THRESHOLD = 0.01  # 1%

MIN_ORDER_PRICE = 0.01
MAX_ORDER_PRICE = 0.99


class OrderType(Enum):
    """Order types."""
    GTC = "GTC"  # Good til cancelled
    FOK = "FOK"  # Fill or kill (entire order or cancel)
    GTD = "GTD"  # Good til date


class OrderSide(Enum):
    """Order side."""
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(Enum):
    """Order status."""
    PENDING = "pending"
    FILLED = "filled"
    REJECTED = "rejected"


class ExecutorError(Exception):
    """Raised when an executor cannot be used at all."""
    pass


@dataclass(frozen=True)
class OrderRequest:
    """Structured order handed to an executor."""

    token_id: str
    side: OrderSide
    price: float
    size: float  # shares
    order_type: OrderType = OrderType.FOK

    @classmethod
    def from_signal(cls, signal: Signal, order_type: OrderType = OrderType.FOK) -> "OrderRequest":
        return cls(
            token_id=signal.token_id,
            side=OrderSide.BUY,
            price=signal.buy_price,
            size=signal.shares,
            order_type=order_type,
        )

    @property
    def notional(self) -> float:
        return self.price * self.size

    def validate(self) -> Optional[str]:
        """Return a problem description, or None if the order is well formed."""
        if not self.token_id:
            return "Missing token id"
        if self.price < MIN_ORDER_PRICE or self.price > MAX_ORDER_PRICE:
            return f"Price {self.price} must be between {MIN_ORDER_PRICE} and {MAX_ORDER_PRICE}"
        if self.size <= 0:
            return "Size must be positive"
        return None


@dataclass
class OrderResult:
    """Result of order placement."""
    success: bool
    order_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    filled_size: float = 0.0
    filled_price: float = 0.0
    message: str = ""
    raw_response: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "order_id": self.order_id,
            "status": self.status.value,
            "filled_size": self.filled_size,
            "filled_price": self.filled_price,
            "message": self.message,
        }


def check_kill_switch(path: Path = KILL_SWITCH_FILE) -> bool:
    """
    Check if kill switch file exists.

    Returns:
        True if kill switch is active (trading should stop)
    """
    return Path(path).exists()


def _check_slippage(expected_price: float, filled_price: float, side: str) -> None:
    """Log a warning when the fill is more than 1% away from the expected price."""
    if expected_price <= 0 or filled_price <= 0:
        return

    slippage = abs(filled_price - expected_price) / expected_price
    if slippage > SLIPPAGE_WARNING_THRESHOLD:
        adverse = filled_price > expected_price if side == "BUY" else filled_price < expected_price
        direction = "adverse" if adverse else "favorable"
        logger.warning(
            f"High slippage detected ({direction}): {slippage:.2%} "
            f"(expected={expected_price:.4f}, filled={filled_price:.4f}, side={side})"
        )


class PaperExecutor:
    """
    Simulated executor: every valid order fills in full at its limit price.

    Example:
        executor = PaperExecutor()
        result = executor.place_order(OrderRequest.from_signal(signal))
    """

    is_paper = True

    def __init__(self):
        self._ids = itertools.count(1)
        self.orders: list[dict[str, Any]] = []

    def is_ready(self) -> bool:
        return True

    def get_error(self) -> str:
        return ""

    def place_order(self, request: OrderRequest) -> OrderResult:
        problem = request.validate()
        if problem:
            return OrderResult(success=False, status=OrderStatus.REJECTED, message=problem)

        order_id = f"paper-{next(self._ids)}"
        self.orders.append({
            "order_id": order_id,
            "token_id": request.token_id,
            "side": request.side.value,
            "price": request.price,
            "size": request.size,
            "order_type": request.order_type.value,
        })
        logger.info(
            f"[PAPER] {request.side.value} {request.size:.2f} @ {request.price:.3f} "
            f"({request.order_type.value}) token={request.token_id[:16]}"
        )
        return OrderResult(
            success=True,
            order_id=order_id,
            status=OrderStatus.FILLED,
            filled_size=request.size,
            filled_price=request.price,
            message="Paper fill",
        )


class LiveExecutor:
    """
    Live executor for the Polymarket CLOB using py-clob-client.

    SECURITY WARNING:
    - Never commit credentials to git
    - Use environment variables or .env file
    - Start with small amounts

    Example:
        executor = LiveExecutor()
        if executor.is_ready():
            result = executor.place_order(OrderRequest.from_signal(signal))
            print(result.message)
    """

    is_paper = False

    def __init__(
        self,
        private_key: Optional[str] = None,
        funder: Optional[str] = None,
        client: Any = None,
        kill_switch_file: Path = KILL_SWITCH_FILE,
    ):
        self.private_key = POLYMARKET_PRIVATE_KEY if private_key is None else private_key
        self.funder = POLYMARKET_FUNDER if funder is None else funder
        self.kill_switch_file = Path(kill_switch_file)

        self._ready = False
        self._last_error = ""
        self._client = client

        if client is not None:
            self._ready = True
        else:
            self._init_client()

    def _init_client(self) -> None:
        """Initialize py-clob-client with L2 credentials."""
        if not self.private_key:
            self._last_error = "POLYMARKET_PRIVATE_KEY not set"
            return
        if not self.funder:
            self._last_error = "POLYMARKET_FUNDER not set"
            return

        try:
            from py_clob_client.client import ClobClient

            key = self.private_key if self.private_key.startswith("0x") else "0x" + self.private_key

            # signature_type=2 is GNOSIS_SAFE for proxy wallets
            self._client = ClobClient(
                CLOB_BASE_URL,
                key=key,
                chain_id=CHAIN_ID,
                funder=self.funder,
                signature_type=2,
            )
            self._client.set_api_creds(self._client.create_or_derive_api_creds())
            self._ready = True
            self._last_error = ""
            logger.info(f"LiveExecutor initialized (funder={self.funder})")
        except ImportError:
            self._last_error = "py-clob-client not installed. Run: pip install py-clob-client"
        except Exception as e:
            self._last_error = f"Failed to initialize client: {e}"

    def is_ready(self) -> bool:
        """Check if executor is ready."""
        return self._ready

    def get_error(self) -> str:
        """Get last error message."""
        return self._last_error

    def _call_api_with_retry(self, func: Callable[..., Any], *args, operation_name: str = "API call") -> Any:
        """
        Call an API function with exponential-backoff retry.

        Raises:
            Exception: The last error once all attempts are exhausted.
        """

        @retry(
            stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(multiplier=1, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
            reraise=True,
        )
        def _execute_with_retry():
            return func(*args)

        try:
            return _execute_with_retry()
        except RetryError as e:
            logger.error(f"{operation_name} failed after {MAX_RETRY_ATTEMPTS} attempts: {e}")
            raise
        except Exception as e:
            logger.error(f"{operation_name} failed: {e}")
            raise

    def _submit(self, request: OrderRequest) -> dict:
        from py_clob_client.clob_types import OrderArgs, PartialCreateOrderOptions
        from py_clob_client.clob_types import OrderType as ClobOrderType

        order_args = OrderArgs(
            token_id=request.token_id,
            price=request.price,
            size=request.size,
            side=request.side.value,
        )
        options = PartialCreateOrderOptions(tick_size="0.01")
        signed = self._client.create_order(order_args, options)
        return self._client.post_order(signed, getattr(ClobOrderType, request.order_type.value))

    def place_order(self, request: OrderRequest) -> OrderResult:
        """
        Place an order on the CLOB.

        Returns:
            OrderResult; failures are reported, not raised.
        """
        if check_kill_switch(self.kill_switch_file):
            logger.warning("Kill switch activated - trading halted")
            return OrderResult(
                success=False,
                status=OrderStatus.REJECTED,
                message="Kill switch activated - trading halted",
            )

        if not self._ready:
            return OrderResult(
                success=False,
                status=OrderStatus.REJECTED,
                message=f"Executor not ready: {self._last_error}",
            )

        problem = request.validate()
        if problem:
            return OrderResult(success=False, status=OrderStatus.REJECTED, message=problem)

        try:
            response = self._call_api_with_retry(self._submit, request, operation_name="place_order")
        except Exception as e:
            self._last_error = str(e)
            return OrderResult(success=False, status=OrderStatus.REJECTED, message=f"Order failed: {e}")

        if not response:
            return OrderResult(success=False, status=OrderStatus.REJECTED, message="Order returned empty response")

        if response.get("success") is False or response.get("errorMsg"):
            return OrderResult(
                success=False,
                status=OrderStatus.REJECTED,
                message=f"Order rejected: {response.get('errorMsg') or 'unknown error'}",
                raw_response=response,
            )

        filled_price = response.get("filledPrice") or response.get("avgFillPrice") or request.price
        try:
            filled_price = float(filled_price)
        except (TypeError, ValueError):
            filled_price = request.price
        _check_slippage(request.price, filled_price, request.side.value)

        return OrderResult(
            success=True,
            order_id=response.get("orderID") or response.get("id"),
            status=OrderStatus.FILLED,
            filled_size=request.size,
            filled_price=filled_price,
            message=f"Status: {response.get('status', 'ok')}",
            raw_response=response,
        )


def create_executor(live: bool = False, **kwargs):
    """
    Factory function to create an executor.

    Args:
        live: If True, returns a LiveExecutor; otherwise a PaperExecutor.

    Raises:
        ExecutorError: If live trading was requested but the client is not ready.
    """
    if not live:
        return PaperExecutor()
    executor = LiveExecutor(**kwargs)
    if not executor.is_ready():
        raise ExecutorError(f"Live executor not ready: {executor.get_error()}")
    return executor
