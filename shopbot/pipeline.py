from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger("shopbot.pipeline")

ContextT = TypeVar("ContextT")


@dataclass
class PipelineStep(Generic[ContextT]):
    """Named step of a turn pipeline with an optional skip guard."""
    name: str
    fn: Callable[[ContextT], None]
    skip_if: Optional[Callable[[ContextT], bool]] = None


class StepRunner(Generic[ContextT]):
    """Runs pipeline steps in declaration order over one mutable context."""

    def __init__(self, steps: List[PipelineStep[ContextT]]) -> None:
        self._steps = list(steps)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: ContextT) -> None:
        """Purpose: Execute steps in order, honoring skip_if guards.
        Inputs/Outputs: Input is a mutable context object; no return value.
        Side Effects / State: Invokes step functions that mutate the context.
        Dependencies: Depends on PipelineStep.fn and PipelineStep.skip_if semantics.
        Failure Modes: Exceptions in step functions propagate to the caller.
        If Removed: The orchestrator cannot run a turn.
        Testing Notes: Verify ordering and that a skipped step is never called.
        """
        for step in self._steps:
            if step.skip_if and step.skip_if(context):
                logger.debug("step=%s status=skipped", step.name)
                continue
            step.fn(context)
