"""
Ordered multi-service operations without a shared transaction.

Each step is either:
  critical      - a failure aborts the saga; compensations registered by the
                  steps that already completed run in reverse order and the
                  original error is re-raised
  non-critical  - a failure is logged and the saga carries on

Step actions receive the results of the earlier steps (keyed by step name)
and their return value is stored under their own name.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Action = Callable[[dict[str, Any]], Awaitable[Any]]
Compensation = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class SagaStep:
    name: str
    action: Action
    critical: bool = True
    compensate: Optional[Compensation] = None


@dataclass
class Saga:
    name: str
    subject: str
    steps: list[SagaStep] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def step(
        self,
        name: str,
        action: Action,
        *,
        critical: bool = True,
        compensate: Optional[Compensation] = None,
    ) -> "Saga":
        self.steps.append(SagaStep(name, action, critical, compensate))
        return self

    async def run(self) -> dict[str, Any]:
        done: list[SagaStep] = []
        for step in self.steps:
            try:
                self.results[step.name] = await step.action(self.results)
            except Exception as exc:
                if not step.critical:
                    logger.warning(
                        "%s[%s] non-critical step '%s' failed: %s",
                        self.name, self.subject, step.name, exc,
                    )
                    self.skipped.append(step.name)
                    continue
                logger.error("%s[%s] step '%s' failed: %s", self.name, self.subject, step.name, exc)
                await self._compensate(done)
                raise
            done.append(step)
            self.completed.append(step.name)
        return self.results

    async def _compensate(self, done: list[SagaStep]) -> None:
        for step in reversed(done):
            if step.compensate is None:
                continue
            try:
                await step.compensate(self.results)
                logger.info("%s[%s] compensated '%s'", self.name, self.subject, step.name)
            except Exception:
                logger.exception("%s[%s] compensation for '%s' failed", self.name, self.subject, step.name)
