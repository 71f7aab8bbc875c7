"""
Settlement runner - applies the chained writes of one ledger operation.

A settlement is an ordered list of steps (debt write, balance delta,
transaction record). Either all of them land or none do:

- transaction mode: every step runs inside one MongoDB session transaction
- compensation mode: steps run one after another; when one fails, the
  completed ones are undone in reverse order

A failure while undoing leaves writes behind, which is reported as
PartialFailureError instead of the original error.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

from app.core.errors import PartialFailureError, translate_persistence_errors

logger = logging.getLogger(__name__)

StepAction = Callable[[Any], Awaitable[Any]]


@dataclass
class SettlementStep:
    """One write of a settlement; both callables receive the session (or None)."""
    name: str
    apply: StepAction
    undo: Optional[StepAction] = None


class SettlementRunner:
    def __init__(self, client=None, use_transactions: bool = False):
        self.client = client
        self.use_transactions = use_transactions and client is not None

    async def run(self, operation_id: str, steps: List[SettlementStep]) -> List[Any]:
        """Apply every step and return their results in order."""
        if self.use_transactions:
            return await self._run_in_transaction(operation_id, steps)
        return await self._run_with_compensation(operation_id, steps)

    async def _run_in_transaction(self, operation_id: str, steps: List[SettlementStep]) -> List[Any]:
        results = []
        with translate_persistence_errors(f"commit settlement {operation_id}"):
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    for step in steps:
                        results.append(await step.apply(session))
        return results

    async def _run_with_compensation(self, operation_id: str, steps: List[SettlementStep]) -> List[Any]:
        results = []
        applied: List[SettlementStep] = []

        for step in steps:
            try:
                results.append(await step.apply(None))
            except (Exception, asyncio.CancelledError) as exc:
                # A cancelled step (operation timeout) is undone like a failed one
                logger.warning(
                    "Settlement %s failed at step %s, undoing %d step(s)",
                    operation_id, step.name, len(applied)
                )
                await self._compensate(operation_id, applied, step.name, exc)
                raise
            applied.append(step)

        return results

    async def _compensate(
        self,
        operation_id: str,
        applied: List[SettlementStep],
        failed_step: str,
        cause: BaseException
    ) -> None:
        remaining = list(applied)
        while remaining:
            step = remaining[-1]
            if step.undo is not None:
                try:
                    await step.undo(None)
                except Exception as undo_exc:
                    logger.error(
                        "Settlement %s left partially applied: steps %s could not be undone",
                        operation_id, [s.name for s in remaining]
                    )
                    raise PartialFailureError(
                        "Settlement was partially applied and needs reconciliation",
                        operation_id=operation_id,
                        applied_steps=[s.name for s in remaining],
                        failed_step=failed_step,
                        cause=cause
                    ) from undo_exc
            remaining.pop()
