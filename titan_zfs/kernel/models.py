"""
Kernel identification values.

KernelTag wraps the kernel image reference found in the runtime VM's
configuration; ModuleImageRef names the prebuilt module image published
for a kernel version.
"""

from __future__ import annotations

from dataclasses import dataclass

from titan_zfs.errors import EnvironmentUnsupportedError


def extract_version(tag: str) -> str:
    """Return the version segment of a kernel tag: everything before the first '-'.

    Args:
        tag: Kernel tag such as ``5.10.104-linuxkit``

    Returns:
        The version part, e.g. ``5.10.104``
    """
    return tag.split("-", 1)[0]


@dataclass(frozen=True)
class KernelTag:
    image: str
    tag: str

    @property
    def version(self) -> str:
        return extract_version(self.tag)

    @classmethod
    def from_image(cls, image: str) -> KernelTag:
        """Build from an image reference like ``linuxkit/kernel:5.10.104-abc``."""
        name, sep, tag = image.strip().rpartition(":")
        if not sep or not name or not tag or "/" in tag:
            raise EnvironmentUnsupportedError(f"Kernel image reference has no tag: {image!r}")
        return cls(image=image.strip(), tag=tag)

    def __str__(self) -> str:
        return self.tag


@dataclass(frozen=True)
class ModuleImageRef:
    repository: str
    tag: str

    @classmethod
    def for_kernel(cls, repository: str, kernel: KernelTag) -> ModuleImageRef:
        return cls(repository=repository, tag=kernel.version)

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"
