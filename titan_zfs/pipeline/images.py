from __future__ import annotations

from archinstall import debug, error, info

from titan_zfs import asset_path
from titan_zfs.environment import Environment
from titan_zfs.errors import ImageBuildError

SERVICE_DOCKERFILE_ASSET = "assets/titan.Dockerfile"


class ImageBuilder:
    """Rebuilds the module-builder and service images from local sources."""

    def __init__(self, env: Environment) -> None:
        self.env = env

    def image_exists(self, image: str) -> bool:
        _, ok = self.env.docker("image", "inspect", image)
        return ok

    def ensure_builder(self, force: bool = False) -> bool:
        """Build (or pull) the module builder image if forced or missing.

        Returns:
            True if the image was (re)built or pulled, False if it was kept
        """
        cfg = self.env.config
        if not force and self.image_exists(cfg.builder_image):
            debug(f"Builder image {cfg.builder_image} present, not rebuilding")
            return False

        if cfg.builder_context:
            info(f"Building {cfg.builder_image} from {cfg.builder_context}")
            self._run("build", "-t", cfg.builder_image, cfg.builder_context)
        else:
            info(f"Pulling {cfg.builder_image}")
            self._run("pull", cfg.builder_image)
        return True

    def build_service(self) -> None:
        cfg = self.env.config
        dockerfile = cfg.service_dockerfile or asset_path(SERVICE_DOCKERFILE_ASSET)
        info(f"Building {cfg.service_image}")
        self._run("build", "-t", cfg.service_image, "-f", dockerfile, cfg.build_context)

    def build_all(self) -> None:
        # the service image copies from the builder image, so the builder goes first
        self.ensure_builder(force=self.env.config.force_builder_rebuild)
        self.build_service()

    def _run(self, *args: str) -> str:
        output, ok = self.env.docker(*args)
        if not ok:
            error(f"docker {args[0]} failed: {output}")
            raise ImageBuildError(f"docker {' '.join(args)} failed", output=output)
        return output
