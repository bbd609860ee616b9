from __future__ import annotations

import re

from titan_zfs.shared import ErrorKind

CHECKPOINT_RE = re.compile(r"^Commit ([0-9a-f]{32})$")

NO_OP_SIGNATURES = (
    "no such repository",
    "does not exist",
    "not installed",
)

TRANSIENT_SIGNATURES = (
    "connection refused",
    "failed to connect",
    "server is not running",
    "timed out",
)


def classify(output: str) -> ErrorKind:
    """Classify the output of a failed titan command."""
    text = output.lower()
    if any(sig in text for sig in TRANSIENT_SIGNATURES):
        return ErrorKind.TRANSIENT
    if any(sig in text for sig in NO_OP_SIGNATURES):
        return ErrorKind.NO_OP
    return ErrorKind.UNKNOWN


def parse_repositories(output: str) -> list[str]:
    """Repository names from ``titan ls`` output, header line skipped."""
    repos: list[str] = []
    for line in output.splitlines():
        fields = line.split()
        if not fields or fields[0].upper() == "REPOSITORY":
            continue
        repos.append(fields[0])
    return repos


def parse_checkpoint_id(output: str) -> str | None:
    """Return the 32 hex digit id when ``output`` is exactly ``Commit <id>``."""
    match = CHECKPOINT_RE.match(output.strip())
    return match.group(1) if match else None


def is_checkpoint_id(output: str) -> bool:
    return parse_checkpoint_id(output) is not None
