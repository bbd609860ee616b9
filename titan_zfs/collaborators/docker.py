from __future__ import annotations

from titan_zfs.shared import ErrorKind

MISSING_ARTIFACT_SIGNATURES = (
    "manifest unknown",
    "not found: manifest",
)

NO_OP_SIGNATURES = (
    "no such container",
    "no such image",
    "no such object",
)

TRANSIENT_SIGNATURES = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "tls handshake timeout",
    "i/o timeout",
    "connection reset by peer",
)


def classify(output: str) -> ErrorKind:
    """Classify the output of a failed docker command."""
    text = output.lower()
    if any(sig in text for sig in MISSING_ARTIFACT_SIGNATURES):
        return ErrorKind.MISSING_ARTIFACT
    if any(sig in text for sig in NO_OP_SIGNATURES):
        return ErrorKind.NO_OP
    if any(sig in text for sig in TRANSIENT_SIGNATURES):
        return ErrorKind.TRANSIENT
    return ErrorKind.UNKNOWN


def parse_container_status(output: str) -> dict[str, str]:
    """Parse ``docker ps --format '{{.Names}}\\t{{.Status}}'`` into name -> status."""
    statuses: dict[str, str] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        name, _, status = line.partition("\t")
        statuses[name.strip()] = status.strip()
    return statuses


def is_running(status: str) -> bool:
    """True for a container that is up and not restarting or still starting."""
    if not status.startswith("Up"):
        return False
    return not any(marker in status for marker in ("Restarting", "(health: starting)", "(unhealthy)"))
