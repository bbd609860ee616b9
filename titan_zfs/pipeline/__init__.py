from .orchestrator import InstallAttempt, InstallOrchestrator
from .report import render_summary
from .stages import CheckResult, Stage, StageOutcome, aggregate_verdict

__all__ = [
    "CheckResult",
    "InstallAttempt",
    "InstallOrchestrator",
    "Stage",
    "StageOutcome",
    "aggregate_verdict",
    "render_summary",
]
