"""
Stage state machine for the installation pipeline.

A Stage pairs an action with the policy applied when that action fails.
Actions return a StageResult (or a full StageOutcome) and signal fatal
conditions by raising BootstrapError; the policy decides what such an
error turns into.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from archinstall import error, info, warn

from titan_zfs.errors import BootstrapError
from titan_zfs.shared import StagePolicy, StageResult, Verdict

_SEVERITY = {StageResult.OK: 0, StageResult.DEGRADED: 1, StageResult.FAILED: 2}


@dataclass
class CheckResult:
    name: str
    result: StageResult
    detail: str = ""


@dataclass
class StageOutcome:
    stage: str
    result: StageResult
    detail: str = ""
    checks: list[CheckResult] = field(default_factory=list)
    error: BootstrapError | None = None


@dataclass
class Stage:
    name: str
    action: Callable[[], StageResult | StageOutcome]
    policy: StagePolicy

    def run(self) -> StageOutcome:
        info(f"Stage {self.name}: starting")
        try:
            returned = self.action()
        except BootstrapError as e:
            return self._handle_error(e)

        outcome = returned if isinstance(returned, StageOutcome) else StageOutcome(stage=self.name, result=returned)
        if outcome.result is StageResult.FAILED and self.policy is StagePolicy.IGNORE:
            warn(f"Stage {self.name} failed, continuing: {outcome.detail}")
            outcome.result = StageResult.OK
        info(f"Stage {self.name}: {outcome.result.value}")
        return outcome

    def _handle_error(self, e: BootstrapError) -> StageOutcome:
        if self.policy is StagePolicy.IGNORE:
            warn(f"Stage {self.name} failed, continuing: {e}")
            return StageOutcome(stage=self.name, result=StageResult.OK, detail=f"ignored: {e}", error=e)
        if self.policy is StagePolicy.DEGRADE:
            warn(f"Stage {self.name} degraded: {e}")
            return StageOutcome(stage=self.name, result=StageResult.DEGRADED, detail=str(e), error=e)
        error(f"Stage {self.name} failed: {e}")
        return StageOutcome(stage=self.name, result=StageResult.FAILED, detail=str(e), error=e)


def worst(results: Iterable[StageResult]) -> StageResult:
    return max(results, key=_SEVERITY.__getitem__, default=StageResult.OK)


def aggregate_verdict(results: Iterable[StageResult]) -> Verdict:
    """Combine stage results: any failed -> failure, any degraded -> partial, else success.

    An empty result set is a failure since nothing was shown to work.
    """
    results = list(results)
    if not results:
        return Verdict.FAILURE
    overall = worst(results)
    if overall is StageResult.FAILED:
        return Verdict.FAILURE
    if overall is StageResult.DEGRADED:
        return Verdict.PARTIAL
    return Verdict.SUCCESS
