# app/transfers/saga.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


logger = logging.getLogger("chainpay.transfers")

# failure policies
ABORT = "ABORT"
DEFER_TO_QUEUE = "DEFER_TO_QUEUE"


@dataclass
class SagaStep:
    name: str
    policy: str
    run: Callable[[Any], None]
    when: Callable[[Any], bool] = lambda ctx: True
    on_failure: Optional[Callable[[Any, Exception], None]] = None


@dataclass
class SagaResult:
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    deferred: dict[str, str] = field(default_factory=dict)


def run_saga(steps: list[SagaStep], ctx: Any) -> SagaResult:
    """
    Run steps in order. An ABORT step's error propagates and stops the saga;
    a DEFER_TO_QUEUE step's error is handed to its on_failure hook and the
    saga continues. Completed steps are never compensated.
    """
    result = SagaResult()
    for step in steps:
        if not step.when(ctx):
            result.skipped.append(step.name)
            continue
        try:
            step.run(ctx)
        except Exception as exc:
            if step.policy == ABORT:
                logger.warning("saga step=%s failed, aborting err=%s", step.name, exc)
                raise
            logger.warning("saga step=%s failed, deferring err=%s", step.name, exc)
            result.deferred[step.name] = str(exc)
            if step.on_failure is not None:
                step.on_failure(ctx, exc)
            continue
        result.completed.append(step.name)
    return result
