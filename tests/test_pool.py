import pytest
from conftest import FakeHost, fail, make_config
from titan_zfs.environment import Environment
from titan_zfs.errors import EnvironmentUnsupportedError, PoolProvisioningError, PoolRecoveryError, PoolStabilityError
from titan_zfs.shared import PoolState
from titan_zfs.storage import PoolManager

POOL_DIR = "/var/lib/titan/pools"


class TestPoolManager:
    """Test pool creation, cleanup and recovery against the fake host."""

    def test_ensure_online_creates_pool(self, env: Environment, host: FakeHost) -> None:
        """Create a pool on a fresh image and loop device."""
        pool = PoolManager(env).ensure_online("titan", 4096)

        assert pool.state is PoolState.ONLINE
        assert pool.device == "/dev/loop0"
        assert host.pools == {"titan": "ONLINE"}
        assert ["truncate", "-s", "4096M", f"{POOL_DIR}/titan.img"] in host.calls
        assert ["zpool", "create", "-f", "titan", "/dev/loop0"] in host.calls

    def test_ensure_online_is_idempotent(self, env: Environment, host: FakeHost) -> None:
        """A second call leaves an online pool alone."""
        manager = PoolManager(env)
        manager.ensure_online("titan", 4096)
        manager.ensure_online("titan", 4096)

        assert host.count("zpool", "create") == 1
        assert host.count("truncate") == 1
        assert host.count("losetup", "-f") == 1

    def test_clean_then_verify_absent(self, env: Environment, host: FakeHost) -> None:
        """Clean removes pools, loop devices and images."""
        manager = PoolManager(env)
        for name in ("titan", "titan-docker"):
            manager.ensure_online(name, 128)

        manager.clean(["titan", "titan-docker"])

        assert manager.verify(["titan", "titan-docker"]) == {"titan": PoolState.ABSENT, "titan-docker": PoolState.ABSENT}
        assert host.loops == {}
        assert f"{POOL_DIR}/titan.img" not in host.files

    def test_clean_is_idempotent(self, env: Environment, host: FakeHost) -> None:
        """Clean on a clean host succeeds."""
        manager = PoolManager(env)
        manager.clean(["titan"])
        manager.clean(["titan"])

        assert manager.pools["titan"].state is PoolState.ABSENT
        assert host.count("rm", "-f") == 2

    def test_clean_fails_on_busy_pool(self, env: Environment, host: FakeHost) -> None:
        """A busy pool cannot be cleaned."""
        host.pools["titan"] = "ONLINE"
        host.script(["zpool", "destroy"], fail("cannot destroy 'titan': pool is busy"))

        with pytest.raises(PoolProvisioningError):
            PoolManager(env).clean(["titan"])

    def test_verify_without_zfs(self, env: Environment, host: FakeHost) -> None:
        """Missing ZFS modules are unsupported."""
        host.script(["zpool", "list"], fail("The ZFS modules are not loaded.\nTry running '/sbin/modprobe zfs' as root to load them."))

        with pytest.raises(EnvironmentUnsupportedError):
            PoolManager(env).verify(["titan"])

    def test_no_loop_device_found(self, env: Environment, host: FakeHost) -> None:
        """No create without a loop device."""
        host.script(["losetup", "-f"], fail("losetup: cannot find an unused loop device"))

        with pytest.raises(PoolProvisioningError):
            PoolManager(env).ensure_online("titan", 4096)
        assert host.count("zpool", "create") == 0

    def test_degraded_pool_recovered(self, env: Environment, host: FakeHost) -> None:
        """A degraded pool is exported and re-imported."""
        host.pools["titan"] = "DEGRADED"

        pool = PoolManager(env).ensure_online("titan", 4096)

        assert pool.state is PoolState.ONLINE
        assert host.count("zpool", "export", "titan") == 1
        assert host.count("zpool", "import", "-f", "titan") == 1
        assert host.count("zpool", "create") == 0

    def test_degraded_pool_that_stays_degraded(self, env: Environment, host: FakeHost) -> None:
        """A failed re-import is raised."""
        host.pools["titan"] = "DEGRADED"
        host.script(["zpool", "import"], fail("cannot import 'titan': one or more devices is currently unavailable"))

        with pytest.raises(PoolRecoveryError):
            PoolManager(env).ensure_online("titan", 4096)

    def test_recover_ignores_absent_pools(self, env: Environment, host: FakeHost) -> None:
        """Absent pools without an image are skipped."""
        PoolManager(env).recover_host_id_mismatch(["titan", "titan-docker"])

        assert host.count("zpool", "export") == 0
        assert host.count("zpool", "import") == 0
        assert host.count("losetup", "-f") == 0

    def test_recover_leaves_online_pools_alone(self, env: Environment, host: FakeHost) -> None:
        """Online pools are not exported."""
        host.pools.update({"titan": "ONLINE", "titan-docker": "ONLINE"})
        host.script(["zpool", "export"], fail("cannot export 'titan': pool is busy"))

        PoolManager(env).recover_host_id_mismatch(["titan", "titan-docker"])

        assert host.count("zpool", "export") == 0
        assert host.pools == {"titan": "ONLINE", "titan-docker": "ONLINE"}

    def test_existing_image_is_reimported_after_restart(self, env: Environment, host: FakeHost) -> None:
        """An image left behind by a restart is re-attached and imported."""
        image = f"{POOL_DIR}/titan.img"
        # runtime VM restarted: image and pool labels survive, loop devices do not
        host.files[image] = ""
        host.importable["titan"] = image

        pool = PoolManager(env).ensure_online("titan", 4096)

        assert pool.state is PoolState.ONLINE
        assert pool.device == "/dev/loop0"
        assert host.loops == {"/dev/loop0": image}
        assert ["zpool", "import", "-f", "titan"] in host.calls
        assert host.count("truncate") == 0
        assert host.count("zpool", "create") == 0

    def test_existing_image_is_never_overwritten(self, env: Environment, host: FakeHost) -> None:
        """An image that cannot be imported is kept and reported."""
        image = f"{POOL_DIR}/titan.img"
        host.files[image] = ""
        host.script(["zpool", "import"], fail("cannot import 'titan': pool was previously in use from another system"))

        with pytest.raises(PoolProvisioningError, match="refusing to overwrite"):
            PoolManager(env).ensure_online("titan", 4096)

        assert host.count("zpool", "create") == 0
        assert host.count("truncate") == 0
        assert image in host.files
        assert host.loops == {}

    def test_failed_create_releases_loop_device(self, env: Environment, host: FakeHost) -> None:
        """A failed create detaches the device and removes the image."""
        host.script(["zpool", "create"], fail("cannot create 'titan': I/O error"))
        manager = PoolManager(env)

        with pytest.raises(PoolProvisioningError):
            manager.ensure_online("titan", 4096)

        assert host.loops == {}
        assert f"{POOL_DIR}/titan.img" not in host.files
        assert manager.pools["titan"].state is PoolState.ABSENT
        assert manager.pools["titan"].device is None

    def test_wait_until_online(self, env: Environment, host: FakeHost) -> None:
        """Return once every pool is online."""
        host.pools.update({"titan": "ONLINE", "titan-docker": "ONLINE"})

        states = PoolManager(env).wait_until_online(["titan", "titan-docker"])

        assert set(states.values()) == {PoolState.ONLINE}

    def test_wait_until_online_gives_up(self, host: FakeHost) -> None:
        """Give up after the poll ceiling."""
        delays: list[float] = []
        env = Environment(config=make_config(pool_poll_attempts=4, pool_poll_interval=2), executor=host, sleep=delays.append)  # type: ignore[arg-type]
        host.pools["titan"] = "ONLINE"

        with pytest.raises(PoolStabilityError, match="titan-docker=absent"):
            PoolManager(env).wait_until_online(["titan", "titan-docker"])
        assert delays == [2, 2, 2]

    def test_nsenter_access(self, host: FakeHost) -> None:
        """Storage commands go through nsenter when configured."""
        env = Environment(config=make_config(host_access="nsenter"), executor=host, sleep=lambda _: None)  # type: ignore[arg-type]

        PoolManager(env).verify(["titan"])

        (call,) = host.find("docker", "run")
        assert call[-5:] == ["zpool", "list", "-H", "-o", "name,health"]
        assert "nsenter" in call
