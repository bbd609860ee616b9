from __future__ import annotations

from titan_zfs.shared import ErrorKind


class BootstrapError(Exception):
    """Base class for every fatal or retryable bootstrap condition.

    Args:
        message: Human readable description
        kind: Classification of the underlying collaborator failure
        remediation: Actionable hints printed by the CLI before exiting
        output: Raw collaborator output that led to the error, if any
    """

    default_kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: ErrorKind | None = None, remediation: list[str] | None = None, output: str = "") -> None:
        super().__init__(message)
        self.kind = kind or self.default_kind
        self.remediation = list(remediation or [])
        self.output = output


class EnvironmentUnsupportedError(BootstrapError):
    default_kind = ErrorKind.UNSUPPORTED_ENVIRONMENT


class ModuleInstallError(BootstrapError):
    pass


class ModuleBuildError(BootstrapError):
    pass


class PoolProvisioningError(BootstrapError):
    pass


class PoolRecoveryError(BootstrapError):
    default_kind = ErrorKind.TRANSIENT


class PoolStabilityError(BootstrapError):
    default_kind = ErrorKind.TRANSIENT


class ImageBuildError(BootstrapError):
    pass


class ServiceNotReadyError(BootstrapError):
    default_kind = ErrorKind.TRANSIENT


class RetryExhaustedError(BootstrapError):
    """Raised when a retried action still fails on its last attempt."""

    def __init__(self, message: str, attempts: int, last_error: BaseException) -> None:
        kind = last_error.kind if isinstance(last_error, BootstrapError) else ErrorKind.UNKNOWN
        super().__init__(message, kind=kind)
        self.attempts = attempts
        self.last_error = last_error
