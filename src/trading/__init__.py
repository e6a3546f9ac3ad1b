"""Trading execution modules."""
from .executor import (
    ExecutorError,
    LiveExecutor,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
    OrderType,
    PaperExecutor,
    check_kill_switch,
    create_executor,
)

__all__ = [
    "ExecutorError",
    "LiveExecutor",
    "OrderRequest",
    "OrderResult",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "PaperExecutor",
    "check_kill_switch",
    "create_executor",
]
