from __future__ import annotations

from archinstall import error

from titan_zfs.environment import Environment


def collect_diagnostics(env: Environment) -> str:
    """Gather container state and service logs after the service failed to come up."""
    cfg = env.config
    sections: list[str] = []

    output, _ = env.docker("ps", "-a", "--filter", f"name={cfg.container_prefix}")
    sections.append(f"== docker ps -a (name={cfg.container_prefix})\n{output.strip() or '(no containers)'}")

    for container in cfg.expected_containers:
        output, ok = env.docker("logs", "--tail", str(cfg.diagnostics_log_lines), container)
        header = f"== docker logs {container}" + ("" if ok else " (unavailable)")
        sections.append(f"{header}\n{output.strip()}")

    output, _ = env.host("zpool", "list")
    sections.append(f"== zpool list\n{output.strip()}")

    report = "\n".join(sections)
    for line in report.splitlines():
        error(line)
    return report
