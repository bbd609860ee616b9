from __future__ import annotations

from archinstall import debug, error, info

from titan_zfs.environment import Environment
from titan_zfs.errors import EnvironmentUnsupportedError
from titan_zfs.kernel.models import KernelTag

KERNEL_KEY = "kernel:"
IMAGE_KEY = "image:"

UNSUPPORTED_HOST_HINTS = [
    "This host does not look like a LinuxKit based container runtime VM",
    "Install the ZFS kernel module for your kernel manually and re-run",
]


def find_kernel_image(config_text: str) -> str | None:
    """Find the kernel image in a LinuxKit style configuration.

    Single pass over ``key: value`` lines. Only ``kernel:`` and ``image:``
    are recognised: the first ``image:`` seen after the first ``kernel:``
    marker is returned and scanning stops there.
    """
    in_kernel = False
    for line in config_text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if fields[0] == KERNEL_KEY:
            in_kernel = True
            continue
        if in_kernel and fields[0] == IMAGE_KEY and len(fields) > 1:
            return fields[1].strip("\"'")
    return None


def detect_kernel_image(env: Environment) -> str:
    """Read the kernel image reference from the host's runtime configuration.

    Raises:
        EnvironmentUnsupportedError: If the configuration cannot be read or
            has no kernel image entry
    """
    path = env.config.kernel_config_path
    debug(f"Reading kernel configuration from {path}")
    output, ok = env.nsenter("cat", path)
    image = find_kernel_image(output) if ok else None
    if not image:
        error("Unable to locate kernel version")
        raise EnvironmentUnsupportedError(f"No kernel image entry found in {path}", remediation=UNSUPPORTED_HOST_HINTS, output=output)
    return image


def detect_kernel_tag(env: Environment) -> KernelTag:
    kernel = KernelTag.from_image(detect_kernel_image(env))
    info(f"Detected kernel {kernel.tag} (version {kernel.version})")
    return kernel


def module_loaded(lsmod_output: str, module: str = "zfs") -> bool:
    """True if ``module`` is the first column of any ``lsmod`` line."""
    for line in lsmod_output.splitlines():
        fields = line.split()
        if fields and fields[0] == module:
            return True
    return False


def zfs_module_loaded(env: Environment) -> bool:
    output, ok = env.docker("run", "--rm", env.config.helper_image, "lsmod")
    if not ok:
        debug(f"lsmod failed, assuming ZFS is not loaded: {output}")
        return False
    return module_loaded(output)
