import argparse
import sys
from pathlib import Path

from archinstall import debug, error, info, warn
from pydantic import ValidationError

from titan_zfs.config import BootstrapConfig, RetrySettings, load_config
from titan_zfs.environment import Environment
from titan_zfs.errors import BootstrapError
from titan_zfs.kernel import ModuleProvisioner, build_module_image
from titan_zfs.pipeline import InstallOrchestrator, render_summary
from titan_zfs.shared import PoolState, Verdict
from titan_zfs.storage import PoolManager

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="titan-zfs", description="Provision ZFS and install the Titan data versioning service")
    parser.add_argument("--config", type=Path, help="JSON file holding a 'titan_zfs' settings block")
    parser.add_argument("--debug", action="store_true", default=None, help="Print raw command output on failure")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("provision-kernel", help="Install a ZFS kernel module matching the container runtime kernel")

    setup = sub.add_parser("setup-pools", help="Create and import the system and docker pools")
    setup.add_argument("--clean", action="store_true", help="Destroy existing pools and backing files first")

    sub.add_parser("verify-pools", help="Print the state of each configured pool")
    sub.add_parser("clean-pools", help="Destroy pools, detach loop devices and remove backing files")

    module = sub.add_parser("build-module-image", help="Package prebuilt ZFS modules as an installable image")
    module.add_argument("--modules-dir", type=Path, required=True, help="Directory holding the compiled module files")
    module.add_argument("--version", help="Kernel version to tag the image with (default: uname -r of the runtime)")

    install = sub.add_parser("install", help="Run the full installation pipeline")
    install.add_argument("--clean-slate", action="store_true", default=None, help="Destroy existing pools before setup")
    install.add_argument("--registry", help="Registry passed to 'titan install'")
    install.add_argument("--force-builder", dest="force_builder_rebuild", action="store_true", default=None, help="Rebuild the ZFS builder image")
    install.add_argument("--max-attempts", type=int, help="Install attempts before giving up")
    return parser


def _config_from_args(ns: argparse.Namespace) -> BootstrapConfig:
    overrides = {
        "debug": ns.debug,
        "clean_slate": getattr(ns, "clean_slate", None),
        "registry": getattr(ns, "registry", None),
        "force_builder_rebuild": getattr(ns, "force_builder_rebuild", None),
    }
    cfg = load_config(ns.config, **overrides)
    max_attempts = getattr(ns, "max_attempts", None)
    if max_attempts is not None:
        cfg.install = RetrySettings(**{**cfg.install.model_dump(), "max_attempts": max_attempts})
    return cfg


def provision_kernel(env: Environment) -> int:
    result = ModuleProvisioner(env).provision()
    info(result.get_summary())
    return EXIT_OK


def setup_pools(env: Environment, clean: bool) -> int:
    manager = PoolManager(env)
    names = env.config.pool_names
    if clean:
        manager.clean(names)
    for spec in env.config.pools:
        manager.ensure_online(spec.name, spec.size_mb)
    states = manager.wait_until_online(names)
    for name, state in states.items():
        print(f"{name}: {state.value}")
    return EXIT_OK


def verify_pools(env: Environment) -> int:
    states = PoolManager(env).verify(env.config.pool_names)
    for name, state in states.items():
        print(f"{name}: {state.value}")
    return EXIT_OK if all(state is PoolState.ONLINE for state in states.values()) else EXIT_FAILURE


def clean_pools(env: Environment) -> int:
    PoolManager(env).clean(env.config.pool_names)
    info("Pools removed")
    return EXIT_OK


def install(env: Environment) -> int:
    attempt = InstallOrchestrator(env).run()
    print(render_summary(attempt))
    if attempt.verdict is Verdict.PARTIAL:
        warn("Titan is installed but verification reported issues")
        return EXIT_OK
    return EXIT_OK if attempt.verdict is Verdict.SUCCESS else EXIT_FAILURE


def _report_error(e: BootstrapError, show_output: bool) -> None:
    error(str(e))
    print(f"ERROR: {e}", file=sys.stderr)
    if e.remediation:
        print("Suggestions:", file=sys.stderr)
        for hint in e.remediation:
            print(f"  - {hint}", file=sys.stderr)
    if show_output and e.output:
        print(e.output, file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    ns = build_parser().parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = _config_from_args(ns)
    except ValidationError as e:
        print(f"ERROR: invalid configuration\n{e}", file=sys.stderr)
        return EXIT_CONFIG
    except (OSError, ValueError) as e:
        print(f"ERROR: unable to read configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG

    env = Environment(config=cfg)
    debug(f"Running {ns.command} with host access {cfg.host_access.value}")

    try:
        match ns.command:
            case "provision-kernel":
                return provision_kernel(env)
            case "setup-pools":
                return setup_pools(env, ns.clean)
            case "verify-pools":
                return verify_pools(env)
            case "clean-pools":
                return clean_pools(env)
            case "build-module-image":
                ref = build_module_image(env, ns.modules_dir, ns.version)
                print(str(ref))
                return EXIT_OK
            case "install":
                return install(env)
    except BootstrapError as e:
        _report_error(e, cfg.debug)
        return EXIT_FAILURE

    return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
