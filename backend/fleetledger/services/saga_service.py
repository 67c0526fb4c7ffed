# Overview: Ordered action/compensation executor for multi-entity writes.

"""
FleetLedger Saga Transactions

WHY THIS EXISTS:
Postings touch several records (stock items, a driver, the document itself) and each
write is committed on its own. A SagaTransaction makes the group all-or-nothing from
the caller's point of view.

RULES:
1. Actions run strictly in registration order, one at a time.
2. When an action raises, compensations of the steps that already succeeded run in
   reverse order (LIFO), each exactly once.
3. A failing compensation is logged and recorded; the remaining compensations still run.
4. The original exception is re-raised after compensation. It is never swallowed.
5. No retries. A failed compensation leaves state for manual reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)

Action = Callable[[], Any]


@dataclass
class SagaStep:
    action: Action
    compensation: Action
    label: Optional[str] = None


@dataclass
class CompensationFailure:
    """A compensation that raised; kept for reconciliation, never re-raised."""
    step_index: int
    label: Optional[str]
    error: BaseException


@dataclass
class SagaTransaction:
    name: str = "saga"
    steps: list[SagaStep] = field(default_factory=list)
    compensation_failures: list[CompensationFailure] = field(default_factory=list)

    def add(self, action: Action, compensation: Action, *, label: Optional[str] = None) -> "SagaTransaction":
        self.steps.append(SagaStep(action=action, compensation=compensation, label=label))
        return self

    def execute(self) -> list[Any]:
        """Run all steps; returns each action's result in order."""
        completed: list[tuple[int, SagaStep]] = []
        results: list[Any] = []
        try:
            for index, step in enumerate(self.steps):
                results.append(step.action())
                completed.append((index, step))
        except Exception:
            logger.warning(
                "[%s] step %d of %d failed, compensating %d completed step(s)",
                self.name, len(completed), len(self.steps), len(completed),
            )
            self._compensate(completed)
            raise
        return results

    def _compensate(self, completed: list[tuple[int, SagaStep]]) -> None:
        for index, step in reversed(completed):
            try:
                step.compensation()
            except Exception as exc:
                logger.error(
                    "[%s] compensation failed at step %d (%s): %s",
                    self.name, index, step.label or "unnamed", exc,
                    exc_info=True,
                )
                self.compensation_failures.append(
                    CompensationFailure(step_index=index, label=step.label, error=exc)
                )
