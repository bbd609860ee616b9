"""
Shared fixtures: an in-memory host that answers the collaborator CLIs.

FakeHost keeps just enough state (pools, loop devices, files, images,
containers, repositories) for the managers to observe the effects of their
own commands. Individual commands can be forced to a given result with
``script()``.
"""

from collections.abc import Sequence
from typing import Any

import pytest
from titan_zfs.config import BootstrapConfig
from titan_zfs.environment import NSENTER_ARGS, Environment
from titan_zfs.executor import CommandResult
from titan_zfs.shared import HostAccess

LINUXKIT_YML = """\
kernel:
  image: linuxkit/kernel:5.10.104-linuxkit
  cmdline: "console=ttyS0"
init:
  - linuxkit/init:v0.8
onboot:
  - name: sysctl
    image: linuxkit/sysctl:v0.8
"""

CHECKPOINT_HEX = "0123456789abcdef0123456789abcdef"

OK = CommandResult("", True)


def fail(output: str) -> CommandResult:
    return CommandResult(output, False)


class FakeHost:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.scripted: list[tuple[tuple[str, ...], list[CommandResult]]] = []

        self.files: dict[str, str] = {"/etc/linuxkit.yml": LINUXKIT_YML}
        self.pools: dict[str, str] = {}
        self.exported: dict[str, str] = {}
        # pool name -> backing image path, for pools whose labels are on disk
        self.importable: dict[str, str] = {}
        self.loops: dict[str, str] = {}
        self.next_loop = 0
        self.images: set[str] = set()
        self.containers: dict[str, str] = {}
        self.repositories: list[str] = []
        self.commits: dict[str, list[str]] = {}

        self.zfs_loaded = False
        self.kernel_release = "5.10.104-linuxkit"
        self.install_brings_up = True
        self.broken_installs = 0

    # test helpers

    def script(self, prefix: Sequence[str], *results: CommandResult) -> None:
        """Answer calls starting with ``prefix`` with ``results`` in order; the last one repeats."""
        self.scripted.append((tuple(prefix), list(results)))

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if tuple(call[: len(prefix)]) == prefix)

    def find(self, *prefix: str) -> list[list[str]]:
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]

    # executor interface

    def execute(self, program: str, args: Sequence[str] = ()) -> CommandResult:
        cmd = [program, *args]
        self.calls.append(cmd)
        for prefix, results in self.scripted:
            if tuple(cmd[: len(prefix)]) == prefix:
                return results.pop(0) if len(results) > 1 else results[0]
        handler = getattr(self, f"_{program}", None)
        if handler is None:
            return fail(f"{program}: command not found")
        return handler(list(args))

    # collaborators

    def _mkdir(self, args: list[str]) -> CommandResult:
        return OK

    def _truncate(self, args: list[str]) -> CommandResult:
        self.files[args[-1]] = ""
        return OK

    def _rm(self, args: list[str]) -> CommandResult:
        self.files.pop(args[-1], None)
        return OK

    def _stat(self, args: list[str]) -> CommandResult:
        if args[-1] not in self.files:
            return fail(f"stat: cannot stat '{args[-1]}': No such file or directory")
        return OK

    def _losetup(self, args: list[str]) -> CommandResult:
        if args == ["-a"]:
            lines = [f"{dev}: [0045]:{i} ({path})" for i, (dev, path) in enumerate(self.loops.items())]
            return CommandResult("\n".join(lines), True)
        if args[0] == "-f":
            device = f"/dev/loop{self.next_loop}"
            self.next_loop += 1
            self.loops[device] = args[1]
            return OK
        if args[0] == "-d":
            if self.loops.pop(args[1], None) is None:
                return fail(f"losetup: {args[1]}: detach failed: No such device or address")
            return OK
        return fail("losetup: bad usage")

    def _zpool(self, args: list[str]) -> CommandResult:
        match args:
            case ["list", "-H", "-o", "name,health"]:
                if not self.pools:
                    return CommandResult("no pools available\n", True)
                return CommandResult("".join(f"{name}\t{health}\n" for name, health in self.pools.items()), True)
            case ["list"]:
                rows = ["NAME    SIZE  ALLOC   FREE  HEALTH"]
                rows += [f"{name}  4G  100K  4G  {health}" for name, health in self.pools.items()]
                return CommandResult("\n".join(rows), True)
            case ["destroy", "-f", name]:
                if self.pools.pop(name, None) is None:
                    return fail(f"cannot open '{name}': no such pool")
                self.importable.pop(name, None)
                return OK
            case ["create", "-f", name, device]:
                if name in self.pools:
                    return fail(f"cannot create '{name}': pool already exists")
                if device not in self.loops:
                    return fail(f"cannot open '{device}': no such device in /dev")
                self.pools[name] = "ONLINE"
                self.importable[name] = self.loops[device]
                return OK
            case ["export", name]:
                if name not in self.pools:
                    return fail(f"cannot open '{name}': no such pool")
                self.exported[name] = self.pools.pop(name)
                return OK
            case ["import", "-f", name]:
                if name in self.exported:
                    self.exported.pop(name)
                elif self.importable.get(name) not in self.loops.values():
                    return fail(f"cannot import '{name}': no such pool available")
                self.pools[name] = "ONLINE"
                return OK
        return fail(f"zpool: unrecognized command {args}")

    def _docker(self, args: list[str]) -> CommandResult:
        if args[0] == "run":
            return self._docker_run(args[1:])
        match args:
            case ["image", "inspect", image]:
                return OK if image in self.images else fail(f"Error: No such image: {image}")
            case ["build", "-t", image, *_]:
                self.images.add(image)
                return CommandResult(f"Successfully tagged {image}", True)
            case ["pull", image]:
                self.images.add(image)
                return OK
            case ["ps", "-a", "--filter", _, "--format", _]:
                return CommandResult("\n".join(f"{name}\t{status}" for name, status in self.containers.items()), True)
            case ["ps", "-a", "--filter", _]:
                rows = ["CONTAINER ID   IMAGE   STATUS   NAMES"]
                rows += [f"abc123   titan:latest   {status}   {name}" for name, status in self.containers.items()]
                return CommandResult("\n".join(rows), True)
            case ["logs", "--tail", _, name]:
                if name not in self.containers:
                    return fail(f"Error: No such container: {name}")
                return CommandResult(f"{name} log line", True)
            case ["system", "prune", "-f"]:
                return CommandResult("Total reclaimed space: 0B", True)
        return OK

    def _docker_run(self, args: list[str]) -> CommandResult:
        if "nsenter" in args:
            inner = args[args.index("nsenter") + len(NSENTER_ARGS) :]
            program, rest = inner[0], inner[1:]
            if program == "cat":
                if rest[0] not in self.files:
                    return fail(f"cat: can't open '{rest[0]}': No such file or directory")
                return CommandResult(self.files[rest[0]], True)
            return self.execute(program, rest)
        if args[-1] == "lsmod":
            modules = "Module                  Size  Used by\n"
            if self.zfs_loaded:
                modules += "zfs                  3854336  0\nspl                   118784  1 zfs\n"
            return CommandResult(modules, True)
        if args[-2:] == ["uname", "-r"]:
            return CommandResult(self.kernel_release + "\n", True)
        image = args[-1]
        if image.startswith("titandata/docker-desktop-zfs-kernel:"):
            if image not in self.images:
                return fail(f"Unable to find image '{image}' locally\ndocker: Error response from daemon: manifest unknown.")
            self.zfs_loaded = True
            return CommandResult("ZFS modules loaded successfully", True)
        if image.startswith("titandata/zfs-builder"):
            self.zfs_loaded = True
            return CommandResult("ZFS build complete", True)
        return OK

    def _titan(self, args: list[str]) -> CommandResult:
        match args:
            case ["ls"]:
                rows = ["REPOSITORY            STATUS"]
                rows += [f"{repo}           running" for repo in self.repositories]
                return CommandResult("\n".join(rows), True)
            case ["install", *_]:
                if self.broken_installs > 0:
                    self.broken_installs -= 1
                elif self.install_brings_up:
                    self.containers = {"titan-docker-server": "Up 20 seconds", "titan-docker-launch": "Exited (0) 5 seconds ago"}
                return CommandResult("Titan cli successfully installed", True)
            case ["uninstall", "-f"]:
                self.containers = {}
                return CommandResult("Uninstalled titan infrastructure", True)
            case ["rm", "-f", repo]:
                if repo not in self.repositories:
                    return fail(f"Error: no such repository '{repo}'")
                self.repositories.remove(repo)
                return OK
            case ["run", "--", "--name", repo, *_]:
                self.repositories.append(repo)
                return CommandResult(f"Running controlled container {repo}", True)
            case ["commit", "-m", _, repo]:
                self.commits.setdefault(repo, []).append(CHECKPOINT_HEX)
                return CommandResult(f"Commit {CHECKPOINT_HEX}\n", True)
            case ["log", repo]:
                lines = [f"commit {commit}\nAuthor: titan" for commit in self.commits.get(repo, [])]
                return CommandResult("\n".join(lines), True)
        return fail(f"titan: unknown command {args}")


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_config(**overrides: Any) -> BootstrapConfig:
    settings: dict[str, Any] = {
        "host_access": HostAccess.DIRECT,
        "settle_seconds": 0,
        "pool_poll_attempts": 3,
        "service_poll_attempts": 3,
    }
    settings.update(overrides)
    return BootstrapConfig(**settings)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def config() -> BootstrapConfig:
    return make_config()


@pytest.fixture
def env(config: BootstrapConfig, host: FakeHost, sleeps: SleepRecorder) -> Environment:
    return Environment(config=config, executor=host, sleep=sleeps)  # type: ignore[arg-type]
