from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from archinstall import debug, error, info, warn

from titan_zfs.collaborators import storage
from titan_zfs.environment import Environment
from titan_zfs.errors import EnvironmentUnsupportedError, PoolProvisioningError, PoolRecoveryError, PoolStabilityError
from titan_zfs.retry import poll_until
from titan_zfs.shared import ErrorKind, PoolState


@dataclass
class Pool:
    name: str
    image_path: str
    device: str | None = None
    state: PoolState = PoolState.ABSENT

    def transition(self, state: PoolState) -> None:
        if state is not self.state:
            debug(f"Pool {self.name}: {self.state.value} -> {state.value}")
        self.state = state


class PoolManager:
    """Keeps the loop-backed system and docker pools in a known state.

    Each pool lives on a sparse file ``<pool_image_dir>/<name>.img`` attached
    to a loop device.
    """

    def __init__(self, env: Environment) -> None:
        self.env = env
        self.pools: dict[str, Pool] = {spec.name: Pool(name=spec.name, image_path=self._image_path(spec.name)) for spec in env.config.pools}

    def _image_path(self, name: str) -> str:
        return str(PurePosixPath(self.env.config.pool_image_dir) / f"{name}.img")

    def _pool(self, name: str) -> Pool:
        if name not in self.pools:
            self.pools[name] = Pool(name=name, image_path=self._image_path(name))
        return self.pools[name]

    def _loop_devices(self, image_path: str) -> list[str]:
        output, ok = self.env.host("losetup", "-a")
        if not ok:
            debug(f"losetup -a failed: {output}")
            return []
        return storage.devices_for(output, image_path)

    def verify(self, names: list[str]) -> dict[str, PoolState]:
        """Return the current state of each named pool.

        Raises:
            EnvironmentUnsupportedError: If ZFS is not usable on the host
            PoolProvisioningError: If the pool listing fails for another reason
        """
        output, ok = self.env.host("zpool", "list", "-H", "-o", "name,health")
        if ok:
            health = storage.parse_pool_health(output)
        else:
            kind = storage.classify(output)
            if kind is ErrorKind.UNSUPPORTED_ENVIRONMENT:
                raise EnvironmentUnsupportedError("ZFS is not available on the host", output=output)
            if kind is not ErrorKind.NO_OP:
                raise PoolProvisioningError(f"Unable to list pools: {output}", kind=kind, output=output)
            health = {}

        states: dict[str, PoolState] = {}
        for name in names:
            state = storage.pool_state(health.get(name))
            self._pool(name).transition(state)
            states[name] = state
        return states

    def clean(self, names: list[str]) -> None:
        """Destroy pools and release their backing files and loop devices. Idempotent."""
        for name in names:
            pool = self._pool(name)
            info(f"Cleaning pool {name}")
            pool.transition(PoolState.DESTROYING)

            output, ok = self.env.host("zpool", "destroy", "-f", name)
            if not ok:
                kind = storage.classify(output)
                if kind is not ErrorKind.NO_OP:
                    error(f"Failed to destroy pool {name}: {output}")
                    raise PoolProvisioningError(f"Failed to destroy pool {name}", kind=kind, output=output)
                debug(f"Pool {name} did not exist")

            for device in self._loop_devices(pool.image_path):
                output, ok = self.env.host("losetup", "-d", device)
                if not ok:
                    warn(f"Failed to detach {device}: {output}")

            self.env.host("rm", "-f", pool.image_path)
            pool.device = None
            pool.transition(PoolState.ABSENT)

    def _image_exists(self, image_path: str) -> bool:
        _, ok = self.env.host("stat", image_path)
        return ok

    def ensure_online(self, name: str, size_mb: int) -> Pool:
        """Create ``name`` on a fresh loop device unless it is already online.

        A pool whose backing image is still on disk is re-imported, never
        recreated; only clean() removes an image.

        Raises:
            PoolProvisioningError: If the pool cannot be created, or its
                backing image exists but holds no importable pool
            PoolRecoveryError: If a degraded pool cannot be re-imported
        """
        pool = self._pool(name)
        state = self.verify([name])[name]
        if state is PoolState.ONLINE:
            debug(f"Pool {name} already online")
            return pool

        if state is PoolState.DEGRADED:
            warn(f"Pool {name} is degraded, attempting host-id recovery")
            self.recover_host_id_mismatch([name])
            if self.verify([name])[name] is PoolState.ONLINE:
                return pool
            raise PoolProvisioningError(f"Pool {name} exists but is not healthy")

        if self._image_exists(pool.image_path):
            info(f"Found existing image {pool.image_path}, importing pool {name}")
            self.recover_host_id_mismatch([name])
            if self.verify([name])[name] is PoolState.ONLINE:
                return pool
            error(f"Pool {name} could not be imported from {pool.image_path}")
            raise PoolProvisioningError(
                f"{pool.image_path} exists but pool {name} cannot be imported; refusing to overwrite it",
                remediation=["Run 'titan-zfs clean-pools' or install with --clean-slate to discard the existing pool"],
            )

        info(f"Creating pool {name} ({size_mb} MB)")
        pool.transition(PoolState.CREATING)
        image_dir = str(PurePosixPath(pool.image_path).parent)
        try:
            self._checked("mkdir", "-p", image_dir)
            self._checked("truncate", "-s", f"{size_mb}M", pool.image_path)
            self._checked("losetup", "-f", pool.image_path)

            devices = self._loop_devices(pool.image_path)
            if not devices:
                error(f"No loop device found for {pool.image_path}")
                raise PoolProvisioningError(f"No loop device attached to {pool.image_path}")
            pool.device = devices[0]

            self._checked("zpool", "create", "-f", name, pool.device)
        except PoolProvisioningError:
            self._release(pool)
            raise

        pool.transition(PoolState.ONLINE)
        info(f"Created pool {name} on {pool.device}")
        return pool

    def _release(self, pool: Pool) -> None:
        """Undo a partial create: detach the image and remove it."""
        for device in self._loop_devices(pool.image_path):
            output, ok = self.env.host("losetup", "-d", device)
            if not ok:
                warn(f"Failed to detach {device}: {output}")
        self.env.host("rm", "-f", pool.image_path)
        pool.device = None
        pool.transition(PoolState.ABSENT)

    def _checked(self, program: str, *args: str) -> str:
        output, ok = self.env.host(program, *args)
        if not ok:
            error(f"{program} {' '.join(args)} failed: {output}")
            raise PoolProvisioningError(f"{program} failed: {output}", kind=storage.classify(output), output=output)
        return output

    def recover_host_id_mismatch(self, names: list[str]) -> None:
        """Bring pools owned by another host id back under this one.

        Online pools are left alone. A degraded pool is exported then
        re-imported. An absent pool whose backing image is still on disk
        (the runtime VM restarted and lost its loop devices) has the image
        re-attached and is imported; if that fails the pool was never
        imported here, so the failure is only logged and the device
        detached again. Absent pools without an image are skipped.

        Raises:
            PoolRecoveryError: If a degraded pool cannot be exported or re-imported
        """
        states = self.verify(names)
        for name in names:
            pool = self._pool(name)
            state = states[name]
            if state is PoolState.ONLINE:
                continue
            if state is PoolState.DEGRADED:
                self._recover_zpool(name, "export", name)
                self._recover_zpool(name, "import", "-f", name)
                continue
            if not self._image_exists(pool.image_path):
                debug(f"Pool {name} has no backing image, nothing to recover")
                continue
            self._import_from_image(pool)

    def _import_from_image(self, pool: Pool) -> None:
        attached = False
        devices = self._loop_devices(pool.image_path)
        if not devices:
            output, ok = self.env.host("losetup", "-f", pool.image_path)
            if not ok:
                debug(f"Unable to attach {pool.image_path}: {output}")
                return
            attached = True
            devices = self._loop_devices(pool.image_path)

        output, ok = self.env.host("zpool", "import", "-f", pool.name)
        if ok:
            pool.device = devices[0] if devices else None
            info(f"Imported pool {pool.name} from {pool.image_path}")
            return

        debug(f"zpool import {pool.name} failed: {output}")
        if attached:
            for device in devices:
                self.env.host("losetup", "-d", device)

    def _recover_zpool(self, name: str, *action: str) -> None:
        output, ok = self.env.host("zpool", *action)
        if not ok:
            error(f"zpool {action[0]} {name} failed: {output}")
            raise PoolRecoveryError(f"Unable to {action[0]} pool {name}", kind=storage.classify(output), output=output)

    def wait_until_online(self, names: list[str]) -> dict[str, PoolState]:
        """Poll until every pool is online.

        Raises:
            PoolStabilityError: If some pool is still not online after the poll bound
        """
        cfg = self.env.config
        states: dict[str, PoolState] = {}

        def all_online() -> bool:
            states.update(self.verify(names))
            return all(states[name] is PoolState.ONLINE for name in names)

        if not poll_until(all_online, attempts=cfg.pool_poll_attempts, interval=cfg.pool_poll_interval, sleep=self.env.sleep, description="pools online"):
            summary = ", ".join(f"{name}={state.value}" for name, state in states.items())
            error(f"Pools did not become stable: {summary}")
            raise PoolStabilityError(f"Pools not online after {cfg.pool_poll_attempts} checks: {summary}")
        return states
