"""
Background workers for payment processing.

- PayoutExecutor: payout.execute job handler (registered with jobs.handlers
  when this module is imported by PaymentsConfig.ready)

Usage:
    from payments.workers import PayoutExecutor
"""

from payments.workers.payout_executor import (
    PayoutExecutionResult,
    PayoutExecutor,
    execute_payout,
)

__all__ = [
    "PayoutExecutionResult",
    "PayoutExecutor",
    "execute_payout",
]
