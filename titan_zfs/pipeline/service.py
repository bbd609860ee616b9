from __future__ import annotations

from archinstall import debug, info, warn

from titan_zfs.collaborators import docker, titan
from titan_zfs.environment import Environment
from titan_zfs.errors import BootstrapError, ServiceNotReadyError
from titan_zfs.retry import poll_until
from titan_zfs.shared import ErrorKind


class ServiceManager:
    """Drives the external ``titan`` install entry point and watches its containers."""

    def __init__(self, env: Environment) -> None:
        self.env = env

    def repositories(self) -> list[str]:
        output, ok = self.env.titan("ls")
        if not ok:
            debug(f"titan ls failed: {output}")
            return []
        return titan.parse_repositories(output)

    def teardown(self) -> None:
        """Remove repositories, uninstall the service and prune the runtime.

        Every step runs even if an earlier one failed; "not found" style
        failures are expected on a fresh host and are not reported.

        Raises:
            BootstrapError: Listing the steps that failed for another reason
        """
        failures: list[str] = []

        for repo in self.repositories():
            output, ok = self.env.titan("rm", "-f", repo)
            if not ok and titan.classify(output) is not ErrorKind.NO_OP:
                failures.append(f"rm {repo}: {output}")

        output, ok = self.env.titan("uninstall", "-f")
        if not ok and titan.classify(output) is not ErrorKind.NO_OP:
            failures.append(f"uninstall: {output}")

        output, ok = self.env.docker("system", "prune", "-f")
        if not ok:
            failures.append(f"prune: {output}")

        if failures:
            raise BootstrapError("Teardown incomplete: " + "; ".join(failures))
        info("Teardown complete")

    def install(self) -> None:
        args = ["install"]
        if self.env.config.registry:
            args.append(f"--registry={self.env.config.registry}")
        output, ok = self.env.titan(*args)
        if not ok:
            # the entry point's own status is not authoritative, containers are
            warn(f"titan {' '.join(args)} reported failure: {output}")

    def container_status(self) -> dict[str, str]:
        output, ok = self.env.docker(
            "ps",
            "-a",
            "--filter",
            f"name={self.env.config.container_prefix}",
            "--format",
            "{{.Names}}\t{{.Status}}",
        )
        if not ok:
            debug(f"docker ps failed: {output}")
            return {}
        return docker.parse_container_status(output)

    def is_stable(self, status: dict[str, str] | None = None) -> bool:
        status = self.container_status() if status is None else status
        return all(docker.is_running(status.get(name, "")) for name in self.env.config.expected_containers)

    def wait_until_stable(self) -> dict[str, str]:
        """Wait the settle time, then poll container status.

        Raises:
            ServiceNotReadyError: If the expected containers are not running
                after the configured number of checks
        """
        cfg = self.env.config
        debug(f"Waiting {cfg.settle_seconds:.0f}s for the service to settle")
        self.env.sleep(cfg.settle_seconds)

        status: dict[str, str] = {}

        def stable() -> bool:
            status.clear()
            status.update(self.container_status())
            return self.is_stable(status)

        if not poll_until(stable, attempts=cfg.service_poll_attempts, interval=cfg.service_poll_interval, sleep=self.env.sleep, description="service containers running"):
            raise ServiceNotReadyError(f"Service containers not running: {status or 'none found'}")
        info("Service containers are running")
        return dict(status)

    def install_and_wait(self) -> dict[str, str]:
        self.install()
        return self.wait_until_stable()
