"""
ZFS kernel module provisioning for container runtime VMs.

Detects the runtime kernel, installs a prebuilt module image for it and
falls back to a source build when no image has been published.
"""

from .detect import detect_kernel_tag, find_kernel_image, zfs_module_loaded
from .image import build_module_image
from .models import KernelTag, ModuleImageRef, extract_version
from .provisioner import BUILD_REMEDIATION_HINTS, FallbackStrategy, ModuleProvisioner, ProvisionResult

__all__ = [
    "BUILD_REMEDIATION_HINTS",
    "FallbackStrategy",
    "KernelTag",
    "ModuleImageRef",
    "ModuleProvisioner",
    "ProvisionResult",
    "build_module_image",
    "detect_kernel_tag",
    "extract_version",
    "find_kernel_image",
    "zfs_module_loaded",
]
