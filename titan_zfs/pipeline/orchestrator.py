"""
Installation pipeline for the Titan service.

Runs teardown, pool setup, image build, service install and functional
verification in that order. Each stage declares its failure policy up front;
the run ends with a success / partial / failure verdict over all stage
results. Two runs against the same host must not overlap: pools, images and
containers are global names and nothing here locks them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from archinstall import info, warn

from titan_zfs.environment import Environment
from titan_zfs.errors import BootstrapError
from titan_zfs.pipeline.diagnostics import collect_diagnostics
from titan_zfs.pipeline.images import ImageBuilder
from titan_zfs.pipeline.service import ServiceManager
from titan_zfs.pipeline.stages import Stage, StageOutcome, aggregate_verdict
from titan_zfs.pipeline.verification import FunctionalVerifier
from titan_zfs.retry import BackoffPolicy, with_retry
from titan_zfs.shared import ErrorKind, PoolState, StagePolicy, StageResult, Verdict
from titan_zfs.storage import PoolManager

TEARDOWN = "teardown"
POOL_SETUP = "pool-setup"
IMAGE_BUILD = "image-build"
SERVICE_INSTALL = "service-install"
VERIFICATION = "verification"


@dataclass
class InstallAttempt:
    """State of one orchestrator run. Never persisted."""

    max_attempts: int
    attempt: int = 0
    teardown_cycles: int = 0
    outcomes: list[StageOutcome] = field(default_factory=list)
    pool_states: dict[str, PoolState] = field(default_factory=dict)
    container_status: dict[str, str] = field(default_factory=dict)
    repositories: list[str] = field(default_factory=list)
    repository: str | None = None
    checkpoint_id: str | None = None
    diagnostics: str = ""
    aborted_at: str | None = None
    verdict: Verdict | None = None

    def record(self, outcome: StageOutcome) -> None:
        self.outcomes.append(outcome)

    def result_of(self, stage: str) -> StageResult | None:
        for outcome in self.outcomes:
            if outcome.stage == stage:
                return outcome.result
        return None


def _retryable(e: BaseException) -> bool:
    return not (isinstance(e, BootstrapError) and e.kind is ErrorKind.UNSUPPORTED_ENVIRONMENT)


class InstallOrchestrator:
    def __init__(
        self,
        env: Environment,
        pools: PoolManager | None = None,
        images: ImageBuilder | None = None,
        service: ServiceManager | None = None,
        verifier: FunctionalVerifier | None = None,
        diagnostics: Callable[[Environment], str] = collect_diagnostics,
    ) -> None:
        self.env = env
        self.pools = pools or PoolManager(env)
        self.images = images or ImageBuilder(env)
        self.service = service or ServiceManager(env)
        self.verifier = verifier or FunctionalVerifier(env)
        self.diagnostics = diagnostics

    def stages(self, attempt: InstallAttempt) -> list[Stage]:
        return [
            Stage(TEARDOWN, self._teardown, StagePolicy.IGNORE),
            Stage(POOL_SETUP, lambda: self._setup_pools(attempt), StagePolicy.ABORT),
            Stage(IMAGE_BUILD, self._build_images, StagePolicy.ABORT),
            Stage(SERVICE_INSTALL, lambda: self._install_service(attempt), StagePolicy.ABORT),
            Stage(VERIFICATION, lambda: self._verify(attempt), StagePolicy.DEGRADE),
        ]

    def run(self) -> InstallAttempt:
        attempt = InstallAttempt(max_attempts=self.env.config.install.max_attempts)
        for stage in self.stages(attempt):
            outcome = stage.run()
            attempt.record(outcome)
            if outcome.result is StageResult.FAILED and stage.policy is StagePolicy.ABORT:
                attempt.aborted_at = stage.name
                break

        attempt.verdict = aggregate_verdict(outcome.result for outcome in attempt.outcomes)
        info(f"Install verdict: {attempt.verdict.value}")
        return attempt

    def _teardown(self) -> StageResult:
        self.service.teardown()
        return StageResult.OK

    def _setup_pools(self, attempt: InstallAttempt) -> StageResult:
        cfg = self.env.config
        names = cfg.pool_names
        if cfg.clean_slate:
            info("Clean slate requested, destroying existing pools")
            self.pools.clean(names)

        for spec in cfg.pools:
            self.pools.ensure_online(spec.name, spec.size_mb)

        attempt.pool_states = self.pools.wait_until_online(names)
        return StageResult.OK

    def _build_images(self) -> StageResult:
        self.images.build_all()
        return StageResult.OK

    def _install_service(self, attempt: InstallAttempt) -> StageResult:
        settings = self.env.config.install

        def install(n: int) -> None:
            attempt.attempt = n
            info(f"Installing Titan (attempt {n}/{settings.max_attempts})")
            attempt.container_status = self.service.install_and_wait()

        def reset(n: int) -> None:
            attempt.teardown_cycles += 1
            info(f"Tearing down before install attempt {n}")
            try:
                self.service.teardown()
            except BootstrapError as e:
                warn(f"Teardown before retry incomplete: {e}")

        try:
            with_retry(
                install,
                max_attempts=settings.max_attempts,
                backoff=BackoffPolicy(initial=settings.initial_delay, multiplier=settings.multiplier, maximum=settings.max_delay),
                is_retryable=_retryable,
                before_retry=reset,
                sleep=self.env.sleep,
                description="Titan install",
            )
        except BootstrapError:
            attempt.container_status = self.service.container_status()
            attempt.diagnostics = self.diagnostics(self.env)
            raise
        return StageResult.OK

    def _verify(self, attempt: InstallAttempt) -> StageOutcome:
        report = self.verifier.run()
        attempt.repository = report.repository
        attempt.repositories = report.repositories
        attempt.checkpoint_id = report.checkpoint_id
        return StageOutcome(stage=VERIFICATION, result=report.result, checks=report.checks)
