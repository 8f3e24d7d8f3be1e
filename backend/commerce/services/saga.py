# Overview: Compensating-action runner for multi-step mutations that span commits.

"""
Saga: a list of applied steps, each with an undo action.

Used where one operation commits several independent units of work (one stock
reservation per order line) and must look atomic to the caller. On failure the
recorded compensations run newest-first and the original error is re-raised.
A compensation that itself fails is logged and the remaining ones still run;
whatever it could not undo is left for the reservation sweep.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app


@dataclass
class SagaStep:
    name: str
    result: Any
    compensate: Callable[[], Any]


@dataclass
class Saga:
    name: str
    steps: list[SagaStep] = field(default_factory=list)
    compensated: bool = False

    def run(self, name: str, action: Callable[[], Any], compensate: Callable[[Any], Any]) -> Any:
        """Apply one step and remember how to undo it."""
        result = action()
        self.steps.append(SagaStep(name=name, result=result, compensate=lambda: compensate(result)))
        return result

    def compensate(self) -> list[str]:
        """Undo applied steps in reverse order. Returns names of steps that failed to undo."""
        failed = []
        for step in reversed(self.steps):
            try:
                step.compensate()
            except Exception:
                current_app.logger.exception(
                    "Saga %s: compensation for step %s failed", self.name, step.name
                )
                failed.append(step.name)
        self.steps.clear()
        self.compensated = True
        return failed

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and self.steps:
            current_app.logger.info(
                "Saga %s failed (%s); compensating %d step(s)",
                self.name, exc_type.__name__, len(self.steps),
            )
            self.compensate()
        return False
