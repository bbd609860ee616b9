"""
ZFS kernel module provisioning with source-build fallback.

The provisioner tries the prebuilt module image published for the running
kernel version first. Only a registry miss for that image triggers the
fallback: a one-shot build of the module on the host through the builder
image. Any other failure is fatal.
"""

from __future__ import annotations

from dataclasses import dataclass

from archinstall import debug, error, info, warn

from titan_zfs.collaborators import docker
from titan_zfs.environment import Environment
from titan_zfs.errors import ModuleBuildError, ModuleInstallError
from titan_zfs.kernel.detect import detect_kernel_tag, zfs_module_loaded
from titan_zfs.kernel.models import KernelTag, ModuleImageRef
from titan_zfs.shared import ErrorKind, ModuleSource

BUILD_REMEDIATION_HINTS = [
    "Ensure the container runtime is using a supported kernel version",
    "Try a different version of the container runtime",
    "Install ZFS manually on your system",
]


@dataclass
class ProvisionResult:
    """Outcome of a successful provisioning run."""

    kernel: KernelTag
    source: ModuleSource
    fallback_occurred: bool = False

    def get_summary(self) -> str:
        if self.source is ModuleSource.ALREADY_LOADED:
            return f"ZFS module already loaded for kernel {self.kernel.tag}"
        fallback_text = " (after fallback)" if self.fallback_occurred else ""
        return f"ZFS module installed from {self.source.value} for kernel {self.kernel.version}{fallback_text}"


class FallbackStrategy:
    """Decides whether a failed prebuilt install may fall back to a source build."""

    @staticmethod
    def should_build_from_source(output: str) -> bool:
        return docker.classify(output) is ErrorKind.MISSING_ARTIFACT


class ModuleProvisioner:
    def __init__(self, env: Environment) -> None:
        self.env = env
        self.fallback_strategy = FallbackStrategy()

    def module_image(self, kernel: KernelTag) -> ModuleImageRef:
        return ModuleImageRef.for_kernel(self.env.config.module_image_repository, kernel)

    def provision(self) -> ProvisionResult:
        """Make sure a ZFS module for the running kernel is loaded.

        Returns:
            ProvisionResult describing which path was taken

        Raises:
            EnvironmentUnsupportedError: If the kernel cannot be identified
            ModuleInstallError: If the prebuilt install failed for a reason
                other than a missing image
            ModuleBuildError: If the source build fallback failed
        """
        kernel = detect_kernel_tag(self.env)

        if zfs_module_loaded(self.env):
            info("ZFS module already loaded, skipping provisioning")
            return ProvisionResult(kernel=kernel, source=ModuleSource.ALREADY_LOADED)

        info("Installing ZFS kernel module")
        output, ok = self.install_prebuilt(kernel)
        if ok:
            info(f"Installed prebuilt ZFS module for kernel {kernel.version}")
            return ProvisionResult(kernel=kernel, source=ModuleSource.PREBUILT)

        if not self.fallback_strategy.should_build_from_source(output):
            error("Unable to install ZFS kernel module")
            raise ModuleInstallError(f"Prebuilt ZFS module install failed for kernel {kernel.version}", output=output)

        warn(f"Pre-built ZFS kernel modules not available for kernel version {kernel.version}")
        info("Falling back to building ZFS from source...")
        self.build_from_source(kernel)
        return ProvisionResult(kernel=kernel, source=ModuleSource.SOURCE_BUILD, fallback_occurred=True)

    def install_prebuilt(self, kernel: KernelTag) -> tuple[str, bool]:
        image = self.module_image(kernel)
        debug(f"Running module image {image}")
        return self.env.docker("run", "--privileged", "--rm", str(image))

    def build_from_source(self, kernel: KernelTag) -> None:
        """Compile the module on the host. Long running and never retried."""
        cfg = self.env.config
        info("Building ZFS kernel modules from source (this may take 10-30 minutes)...")
        output, ok = self.env.docker(
            "run",
            "--rm",
            "--privileged",
            "-v",
            f"{cfg.docker_socket}:/var/run/docker.sock",
            "-e",
            f"ZFS_VERSION={cfg.zfs_version}",
            "-e",
            f"ZFS_CONFIG={cfg.zfs_config}",
            cfg.builder_image,
        )
        if not ok:
            error("Failed to build ZFS from source")
            raise ModuleBuildError(
                f"ZFS source build failed for kernel {kernel.version}",
                kind=ErrorKind.MISSING_ARTIFACT,
                remediation=BUILD_REMEDIATION_HINTS,
                output=output,
            )
        info("ZFS kernel modules built successfully")
