"""
Synchronous command execution for collaborator CLIs.

Every external command in this project goes through CommandExecutor. It never
raises on a non-zero exit status: callers receive the combined output and a
success flag and decide for themselves what a failure means.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import NamedTuple

from archinstall import debug
from archinstall.lib.exceptions import RequirementError, SysCallError
from archinstall.lib.general import SysCommand

DEFAULT_ALLOWED_PROGRAMS = frozenset({"docker", "nsenter", "zpool", "losetup", "truncate", "mkdir", "rm", "stat", "titan"})


class CommandResult(NamedTuple):
    output: str
    ok: bool


def _failure_output(exc: SysCallError) -> str:
    worker_log = getattr(exc, "worker_log", b"")
    if worker_log:
        return worker_log.decode("utf-8", errors="backslashreplace").strip()
    return str(exc)


class CommandExecutor:
    """Runs allow-listed programs and captures (output, ok)."""

    def __init__(self, allowed_programs: Iterable[str] = DEFAULT_ALLOWED_PROGRAMS) -> None:
        self.allowed_programs = frozenset(allowed_programs)

    def execute(self, program: str, args: Sequence[str] = ()) -> CommandResult:
        """Run ``program`` with ``args`` and block until it exits.

        Args:
            program: Name of an allow-listed executable
            args: Arguments passed verbatim, no shell involved

        Returns:
            CommandResult with the combined stdout/stderr text and whether
            the exit status was zero

        Raises:
            ValueError: If ``program`` is not in the allow-list
        """
        if program not in self.allowed_programs:
            raise ValueError(f"Program not allowed: {program}")

        cmd = [program, *args]
        debug(f"Executing: {' '.join(cmd)}")
        try:
            output = SysCommand(cmd).decode()
        except SysCallError as e:
            output = _failure_output(e)
            debug(f"Command failed ({getattr(e, 'exit_code', None)}): {' '.join(cmd)}")
            return CommandResult(output, False)
        except RequirementError as e:
            debug(f"Command unavailable: {e}")
            return CommandResult(str(e), False)

        return CommandResult(output, True)
