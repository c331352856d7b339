"""
Stage runner for the provisioning pipeline.

A stage is either fatal (any exception stops the run) or best-effort
(exceptions become warnings and the run continues). Optional stages whose
tool is missing raise StageSkipped.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from rich.markup import escape

from .console import LOGGER_NAME, NordColors, print_error, print_step, print_warning

logger = logging.getLogger(LOGGER_NAME)


class StageSkipped(Exception):
    """Raised by an optional stage when its prerequisite is absent."""


class Outcome(Enum):
    OK = "ok"
    SKIPPED = "skipped"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"


OUTCOME_STYLES = {
    Outcome.OK: f"[{NordColors.GREEN}]✓ ok[/]",
    Outcome.SKIPPED: f"[{NordColors.FROST_3}]– skipped[/]",
    Outcome.RECOVERABLE: f"[{NordColors.YELLOW}]⚠ warning[/]",
    Outcome.FATAL: f"[{NordColors.RED}]✗ failed[/]",
}


@dataclass
class Stage:
    name: str
    description: str
    func: Callable[[], Optional[str]]
    best_effort: bool = False


@dataclass
class StageResult:
    name: str
    outcome: Outcome
    message: str = ""
    elapsed: float = 0.0

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FATAL


@dataclass
class Pipeline:
    stages: List[Stage] = field(default_factory=list)

    def add(
        self,
        name: str,
        description: str,
        func: Callable[[], Optional[str]],
        best_effort: bool = False,
    ) -> "Pipeline":
        self.stages.append(Stage(name, description, func, best_effort))
        return self

    def run_stage(self, stage: Stage) -> StageResult:
        print_step(stage.description)
        logger.info(f"Starting: {stage.description}")
        start = time.time()
        try:
            message = stage.func() or ""
            outcome = Outcome.OK
        except StageSkipped as e:
            message = str(e)
            outcome = Outcome.SKIPPED
            print_warning(message)
        except Exception as e:
            message = str(e)
            if stage.best_effort:
                outcome = Outcome.RECOVERABLE
                print_warning(f"{stage.description} failed (continuing): {message}")
            else:
                outcome = Outcome.FATAL
                print_error(f"{stage.description} failed: {message}")
        elapsed = time.time() - start
        logger.info(f"{stage.name}: {outcome.value} in {elapsed:.2f}s {message}".rstrip())
        return StageResult(stage.name, outcome, message, elapsed)

    def run(self) -> List[StageResult]:
        """Run stages in order, stopping after the first fatal result."""
        results = []
        for stage in self.stages:
            result = self.run_stage(stage)
            results.append(result)
            if result.failed:
                break
        return results


def succeeded(results: List[StageResult]) -> bool:
    return not any(r.failed for r in results)


def summary_rows(results: List[StageResult]) -> List[tuple]:
    return [
        (r.name, OUTCOME_STYLES[r.outcome], f"{r.elapsed:.2f}s", escape(r.message))
        for r in results
    ]
