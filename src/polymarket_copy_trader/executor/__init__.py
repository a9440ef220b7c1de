"""Execution layer - Copy-trade orchestration, outbox queue and order backends."""

from polymarket_copy_trader.executor.backend import (
    ClobExecutionBackend,
    DryRunExecutionBackend,
    ExecutionBackend,
    ExecutionError,
    OrderRequest,
)
from polymarket_copy_trader.executor.orchestrator import (
    ExecutionOrchestrator,
    ExecutionOutcome,
    ExecutionResult,
)
from polymarket_copy_trader.executor.queue import ExecutionWorker, QueueFullPolicy, SignalOutbox

__all__ = [
    "ClobExecutionBackend",
    "DryRunExecutionBackend",
    "ExecutionBackend",
    "ExecutionError",
    "ExecutionOrchestrator",
    "ExecutionOutcome",
    "ExecutionResult",
    "ExecutionWorker",
    "OrderRequest",
    "QueueFullPolicy",
    "SignalOutbox",
]
