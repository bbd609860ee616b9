from __future__ import annotations

from typing import TYPE_CHECKING

from titan_zfs.shared import StageResult, Verdict

if TYPE_CHECKING:
    from titan_zfs.pipeline.orchestrator import InstallAttempt

_VERDICT_TEXT = {
    Verdict.SUCCESS: "SUCCESS - Titan is installed and versioning works",
    Verdict.PARTIAL: "PARTIAL SUCCESS - Titan is installed with known issues",
    Verdict.FAILURE: "FAILURE - see the stage results above",
}


def render_summary(attempt: InstallAttempt) -> str:
    """Human readable end-of-run summary. Advisory only."""
    lines = ["", "=== Pool status ==="]
    if attempt.pool_states:
        lines += [f"  {name}: {state.value}" for name, state in attempt.pool_states.items()]
    else:
        lines.append("  (not checked)")

    lines += ["", "=== Service status ==="]
    lines.append(f"  install attempts: {attempt.attempt}/{attempt.max_attempts}")
    if attempt.container_status:
        lines += [f"  {name}: {status}" for name, status in attempt.container_status.items()]
    else:
        lines.append("  (no service containers seen)")

    lines += ["", "=== Versioning status ==="]
    if attempt.checkpoint_id:
        lines.append(f"  checkpoint: Commit {attempt.checkpoint_id}")
    else:
        lines.append("  checkpoint: none")

    lines += ["", "=== Repository status ==="]
    lines.append(f"  probe repository: {attempt.repository or 'none'}")
    if attempt.repositories:
        lines.append(f"  registered: {', '.join(attempt.repositories)}")

    lines += ["", "=== Stages ==="]
    for outcome in attempt.outcomes:
        marker = {StageResult.OK: "ok", StageResult.DEGRADED: "degraded", StageResult.FAILED: "FAILED"}[outcome.result]
        lines.append(f"  {outcome.stage:<16} {marker}{f' - {outcome.detail}' if outcome.detail else ''}")
        for check in outcome.checks:
            lines.append(f"    {check.name:<14} {check.result.value}{f' - {check.detail}' if check.detail else ''}")
    if attempt.aborted_at:
        lines.append(f"  aborted at stage {attempt.aborted_at}")

    if attempt.verdict is not None:
        lines += ["", f"Result: {_VERDICT_TEXT[attempt.verdict]}"]
    return "\n".join(lines)
