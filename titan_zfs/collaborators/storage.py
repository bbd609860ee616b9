"""Parsing for zpool and losetup output."""

from __future__ import annotations

from pathlib import PurePosixPath

from titan_zfs.shared import ErrorKind, PoolState

NO_OP_SIGNATURES = (
    "no such pool",
    "no pools available",
    "no such device or address",
    "no such file or directory",
)

TRANSIENT_SIGNATURES = (
    "previously in use from another system",
    "last accessed by another system",
    "hostid",
    "pool is busy",
    "dataset is busy",
)

UNSUPPORTED_SIGNATURES = (
    "zfs modules are not loaded",
    "failed to initialize the libzfs library",
)


def classify(output: str) -> ErrorKind:
    """Classify the output of a failed zpool or losetup command."""
    text = output.lower()
    if any(sig in text for sig in UNSUPPORTED_SIGNATURES):
        return ErrorKind.UNSUPPORTED_ENVIRONMENT
    if any(sig in text for sig in TRANSIENT_SIGNATURES):
        return ErrorKind.TRANSIENT
    if any(sig in text for sig in NO_OP_SIGNATURES):
        return ErrorKind.NO_OP
    return ErrorKind.UNKNOWN


def parse_pool_health(output: str) -> dict[str, str]:
    """Parse ``zpool list -H -o name,health`` into name -> health."""
    health: dict[str, str] = {}
    for line in output.splitlines():
        fields = line.split("\t") if "\t" in line else line.split()
        if len(fields) < 2 or fields[0].lower() == "no":
            continue
        health[fields[0].strip()] = fields[1].strip().upper()
    return health


def pool_state(health: str | None) -> PoolState:
    if health is None:
        return PoolState.ABSENT
    if health == "ONLINE":
        return PoolState.ONLINE
    return PoolState.DEGRADED


def parse_loop_devices(output: str) -> list[tuple[str, str]]:
    """Parse ``losetup -a`` into (device, backing file) pairs.

    Lines look like ``/dev/loop0: [0045]:1234 (/var/lib/titan/pools/titan.img)``.
    """
    devices: list[tuple[str, str]] = []
    for line in output.splitlines():
        if not line.startswith("/dev/"):
            continue
        device, _, rest = line.partition(":")
        backing = ""
        if "(" in rest and rest.rstrip().endswith(")"):
            backing = rest[rest.rfind("(") + 1 : rest.rstrip().rfind(")")]
        devices.append((device.strip(), backing.strip()))
    return devices


def devices_for(output: str, backing_file: str) -> list[str]:
    """Loop devices in ``losetup -a`` output whose backing file has the name of ``backing_file``."""
    name = PurePosixPath(backing_file).name
    return [device for device, backing in parse_loop_devices(output) if PurePosixPath(backing).name == name]
