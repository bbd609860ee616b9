from __future__ import annotations

from enum import Enum


class ModuleSource(Enum):
    """Where the ZFS kernel module came from."""

    ALREADY_LOADED = "already_loaded"
    PREBUILT = "prebuilt"
    SOURCE_BUILD = "source_build"


class HostAccess(Enum):
    """How host-side storage commands are reached."""

    NSENTER = "nsenter"
    DIRECT = "direct"


class PoolState(Enum):
    ABSENT = "absent"
    CREATING = "creating"
    ONLINE = "online"
    DEGRADED = "degraded"
    DESTROYING = "destroying"


class StageResult(Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


class StagePolicy(Enum):
    """What a stage failure does to the run."""

    ABORT = "abort"
    DEGRADE = "degrade"
    IGNORE = "ignore"


class Verdict(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class ErrorKind(Enum):
    """Failure classes recognised in collaborator output."""

    UNSUPPORTED_ENVIRONMENT = "unsupported_environment"
    MISSING_ARTIFACT = "missing_artifact"
    TRANSIENT = "transient"
    NO_OP = "no_op"
    UNKNOWN = "unknown"
