from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from titan_zfs.shared import HostAccess

CONFIG_KEY = "titan_zfs"
SCHEMA_VERSION = 1

_POOL_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.:-]*$")


class PoolSpec(BaseModel):
    name: str
    size_mb: int = 4096

    @field_validator("name")
    @classmethod
    def _validate_name(cls, v: str) -> str:
        if not _POOL_NAME_RE.match(v):
            raise ValueError(f"Invalid pool name: {v!r}")
        return v

    @field_validator("size_mb")
    @classmethod
    def _validate_size(cls, v: int) -> int:
        if v < 64:
            raise ValueError("Pool image must be at least 64 MB")
        return v


class ProbeWorkload(BaseModel):
    """A container started through `titan run` to exercise the service."""

    repository: str
    image: str
    docker_args: list[str] = Field(default_factory=list)


class RetrySettings(BaseModel):
    max_attempts: int = 3
    initial_delay: float = 10.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    @field_validator("max_attempts")
    @classmethod
    def _validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class BootstrapConfig(BaseModel):
    """Settings for one provisioning or install run.

    Loaded from the ``titan_zfs`` block of a JSON file, then overridden by
    environment and command line flags.
    """

    model_config = ConfigDict(validate_assignment=True)

    debug: bool = False

    # Host access
    host_access: HostAccess = HostAccess.NSENTER
    helper_image: str = "alpine:latest"
    docker_socket: str = "/var/run/docker.sock"

    # Kernel module provisioning
    kernel_config_path: str = "/etc/linuxkit.yml"
    module_image_repository: str = "titandata/docker-desktop-zfs-kernel"
    builder_image: str = "titandata/zfs-builder:latest"
    zfs_version: str = "zfs-0.8.2"
    zfs_config: str = "kernel"

    # Pools
    system_pool: PoolSpec = Field(default_factory=lambda: PoolSpec(name="titan"))
    docker_pool: PoolSpec = Field(default_factory=lambda: PoolSpec(name="titan-docker"))
    pool_image_dir: str = "/var/lib/titan/pools"
    pool_poll_attempts: int = 10
    pool_poll_interval: float = 2.0
    clean_slate: bool = False

    # Images
    service_image: str = "titan:latest"
    service_dockerfile: str | None = None
    build_context: str = "."
    builder_context: str | None = None
    force_builder_rebuild: bool = False

    # Service install
    titan_cli: str = "titan"
    registry: str | None = None
    install: RetrySettings = Field(default_factory=RetrySettings)
    settle_seconds: float = 15.0
    service_poll_attempts: int = 12
    service_poll_interval: float = 5.0
    container_prefix: str = "titan-"
    expected_containers: list[str] = Field(default_factory=lambda: ["titan-docker-server"])
    diagnostics_log_lines: int = 50

    # Functional verification
    primary_probe: ProbeWorkload = Field(
        default_factory=lambda: ProbeWorkload(
            repository="titan-probe",
            image="postgres:12",
            docker_args=["-e", "POSTGRES_PASSWORD=titan"],
        )
    )
    fallback_probe: ProbeWorkload = Field(
        default_factory=lambda: ProbeWorkload(repository="titan-probe-simple", image="redis:alpine"),
    )
    checkpoint_message: str = "titan-zfs verification checkpoint"

    @field_validator("pool_poll_attempts", "service_poll_attempts")
    @classmethod
    def _validate_poll_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Poll attempts must be at least 1")
        return v

    @field_validator("pool_image_dir")
    @classmethod
    def _validate_image_dir(cls, v: str) -> str:
        if not Path(v).is_absolute():
            raise ValueError(f"Path {v} must be absolute")
        return v

    @property
    def pools(self) -> list[PoolSpec]:
        return [self.system_pool, self.docker_pool]

    @property
    def pool_names(self) -> list[str]:
        return [spec.name for spec in self.pools]

    def pool_spec(self, name: str) -> PoolSpec:
        for spec in self.pools:
            if spec.name == name:
                return spec
        raise ValueError(f"Unknown pool: {name}. Configured: {self.pool_names}")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> BootstrapConfig:
        return cls.model_validate(data)


def env_overrides() -> dict[str, Any]:
    """Settings taken from the process environment."""
    overrides: dict[str, Any] = {}
    if "TITAN_DEBUG" in os.environ:
        overrides["debug"] = True
    return overrides


def load_config(config_path: Path | None = None, **overrides: Any) -> BootstrapConfig:
    """Build the run configuration.

    Precedence, lowest first: model defaults, the ``titan_zfs`` block of
    ``config_path``, the environment, then ``overrides`` whose value is not None.
    """
    data: dict[str, Any] = {}
    if config_path is not None and config_path.exists():
        raw = json.loads(config_path.read_text() or "{}")
        data = dict(raw.get(CONFIG_KEY, {}))
        data.pop("schema_version", None)

    data.update(env_overrides())
    data.update({k: v for k, v in overrides.items() if v is not None})
    return BootstrapConfig.from_json(data)


def save_config(config: BootstrapConfig, dest_path: Path) -> None:
    """Write ``config`` into ``dest_path``, keeping any unrelated top-level keys."""
    existing = json.loads(dest_path.read_text() or "{}") if dest_path.exists() else {}
    existing[CONFIG_KEY] = {"schema_version": SCHEMA_VERSION, **config.to_json()}
    dest_path.write_text(json.dumps(existing, indent=4, sort_keys=True))
