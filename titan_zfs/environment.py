from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from titan_zfs.config import BootstrapConfig
from titan_zfs.executor import DEFAULT_ALLOWED_PROGRAMS, CommandExecutor, CommandResult
from titan_zfs.shared import HostAccess

NSENTER_ARGS = ["nsenter", "-t", "1", "-m", "-u", "-n", "-i"]


@dataclass
class Environment:
    """Handle on the host shared by every component of a run.

    Pools, images and containers are globally named on the host; components
    reach them only through this object so a run can be pointed at a fake
    executor in tests.
    """

    config: BootstrapConfig
    executor: CommandExecutor | None = None
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.executor is None:
            # titan_cli may be a full path
            self.executor = CommandExecutor(DEFAULT_ALLOWED_PROGRAMS | {self.config.titan_cli})

    def run(self, program: str, *args: str) -> CommandResult:
        return self.executor.execute(program, list(args))

    def docker(self, *args: str) -> CommandResult:
        return self.run("docker", *args)

    def titan(self, *args: str) -> CommandResult:
        return self.run(self.config.titan_cli, *args)

    def nsenter(self, program: str, *args: str) -> CommandResult:
        """Run ``program`` in the host namespaces from a privileged helper container."""
        return self.docker(
            "run",
            "--rm",
            "-i",
            "--privileged",
            "--pid=host",
            self.config.helper_image,
            *NSENTER_ARGS,
            program,
            *args,
        )

    def host(self, program: str, *args: str) -> CommandResult:
        """Run a host-side storage command according to ``host_access``."""
        if self.config.host_access is HostAccess.DIRECT:
            return self.run(program, *args)
        return self.nsenter(program, *args)
