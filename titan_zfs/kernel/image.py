"""
Local publishing of a prebuilt module image.

Packs already compiled ZFS modules into an image tagged the way the
provisioner looks them up, so a kernel without a published image can be
served from the local image store on the next run.
"""

from __future__ import annotations

from pathlib import Path

from archinstall import error, info
from jinja2 import Environment as TemplateEnvironment
from jinja2 import FileSystemLoader, StrictUndefined

from titan_zfs import asset_path
from titan_zfs.environment import Environment
from titan_zfs.errors import ImageBuildError
from titan_zfs.kernel.models import ModuleImageRef, extract_version

TEMPLATE_NAME = "kernel.dockerfile.j2"
DOCKERFILE_NAME = "kernel.dockerfile"


def render_module_dockerfile(modules_dir: str, base_image: str = "alpine:latest", module: str = "zfs") -> str:
    env = TemplateEnvironment(
        loader=FileSystemLoader(asset_path("templates")),
        undefined=StrictUndefined,
        autoescape=False,  # Dockerfile, not HTML  # noqa: S701
        keep_trailing_newline=True,
    )
    return env.get_template(TEMPLATE_NAME).render(base_image=base_image, modules_dir=modules_dir, module=module)


def running_kernel_version(env: Environment) -> str:
    output, ok = env.docker("run", "--rm", env.config.helper_image, "uname", "-r")
    if not ok or not output.strip():
        raise ImageBuildError("Unable to determine the running kernel version", output=output)
    return extract_version(output.strip())


def build_module_image(env: Environment, modules_dir: Path, version: str | None = None) -> ModuleImageRef:
    """Build ``<module_image_repository>:<version>`` from compiled modules.

    Args:
        env: Run environment
        modules_dir: Directory holding the ``lib/modules`` tree to ship;
            its parent is used as the build context
        version: Kernel version to tag with, read from the host when omitted

    Returns:
        The reference of the built image
    """
    if not modules_dir.is_dir():
        raise ImageBuildError(f"Modules directory does not exist: {modules_dir}")

    image = ModuleImageRef(env.config.module_image_repository, extract_version(version or running_kernel_version(env)))

    context = modules_dir.resolve().parent
    dockerfile = context / DOCKERFILE_NAME
    dockerfile.write_text(render_module_dockerfile(modules_dir.name, base_image=env.config.helper_image))

    info(f"Creating kernel module image {image}")
    output, ok = env.docker("build", "-t", str(image), "-f", str(dockerfile), str(context))
    if not ok:
        error(f"Failed to build {image}")
        raise ImageBuildError(f"docker build failed for {image}", output=output)

    info(f"Built image: {image}")
    return image
