import asyncio
import logging
import time
from typing import Awaitable, Callable, Collection

from kuberoll import metrics
from kuberoll.builds import BUILD_COLUMNS, attach_builds, parse_instance_builds
from kuberoll.config import Settings
from kuberoll.gateway import ExecutionGateway
from kuberoll.health import HealthStateMachine
from kuberoll.inventory import parse_instances
from kuberoll.models import Instance, RolloutResult, RolloutTarget, TargetOutcome, TargetStatus

logger = logging.getLogger(__name__)


class ConvergencePoller:
    """One shared polling loop for every deployment rolled out in this run.

    Owns the active-target set, the listener registry, the aggregate error
    flag and the deadline clock. The set only ever shrinks: targets leave it
    when their health machine resolves, when their update fails, or when the
    global deadline fires. The loop ends when it is empty.
    """

    def __init__(
        self,
        gateway: ExecutionGateway,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.settings = settings
        self.clock = clock
        self.sleep = sleep

        self.active: dict[str, RolloutTarget] = {}
        self.listeners: dict[str, HealthStateMachine] = {}
        self.outcomes: dict[str, TargetOutcome] = {}
        self.errored = False
        self.started_at: float | None = None
        self._retired: set[str] = set()
        self._task: asyncio.Task | None = None

    # ── Target Registry ───────────────────────────────────────────

    def track(self, target: RolloutTarget) -> None:
        """Add a target to the active set before its update is issued."""
        if target.name in self._retired or target.name in self.active:
            return
        self.active[target.name] = target
        metrics.active_targets.set(len(self.active))

    def watch(self, target: RolloutTarget) -> None:
        """Register a health listener for a target and start the loop if needed."""
        self.track(target)
        if target.name not in self.active:
            logger.warning(
                f"Not watching {target.name}: already resolved",
                extra={"deployment": target.name},
            )
            return

        self.listeners[target.name] = HealthStateMachine(target, self)
        if self._task is None:
            self.started_at = self.clock()
            self._task = asyncio.ensure_future(self._loop())

    def resolve(self, name: str, outcome: TargetOutcome) -> None:
        """Retire a target. Called from listeners and from failed updates."""
        if name in self._retired:
            return
        self.active.pop(name, None)
        self.listeners.pop(name, None)
        self._retired.add(name)
        self.outcomes[name] = outcome
        if not outcome.status.ok:
            self.errored = True
        metrics.record_outcome(outcome.status.value)
        metrics.active_targets.set(len(self.active))

    # ── Polling ───────────────────────────────────────────────────

    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return self.clock() - self.started_at

    async def _list_with_builds(self, names: Collection[str]) -> list[Instance]:
        # listing and build query are retried together: pods deleted between
        # the two calls make the build query fail, and a fresh listing drops them
        text = await self.gateway.execute(["get", "pods"])
        instances = [i for i in parse_instances(text) if i.name in names]
        if not instances:
            return instances

        ids = [instance.id for instance in instances]
        builds_text = await self.gateway.execute(["get", "pods", *ids, "-o", BUILD_COLUMNS])
        return attach_builds(instances, parse_instance_builds(builds_text))

    async def snapshot(self, names: Collection[str] | None = None) -> list[Instance]:
        """One batched pod listing plus one batched build query, for all active targets by default."""
        if names is None:
            names = set(self.active)
        return await self.gateway.attempt("getting pods", lambda: self._list_with_builds(names))

    def dispatch(self, instances: list[Instance]) -> None:
        for name, listener in list(self.listeners.items()):
            # an earlier listener in this pass may have retired this one
            if name not in self.listeners:
                continue
            listener.on_snapshot(instances)

    def expire(self) -> None:
        remaining = sorted(self.active)
        logger.error(
            f"Timed out after {self.settings.TIMEOUT_SECONDS:g}s waiting for: {', '.join(remaining)}"
        )
        for name in remaining:
            target = self.active[name]
            self.resolve(name, TargetOutcome(
                name=name,
                status=TargetStatus.TIMED_OUT,
                expected_build=target.expected_build,
                message=f"still not converged after {self.settings.TIMEOUT_SECONDS:g}s",
            ))

    async def _loop(self) -> None:
        try:
            while self.active:
                if self.elapsed() > self.settings.TIMEOUT_SECONDS:
                    self.expire()
                    break

                metrics.poll_ticks_total.inc()
                instances = await self.snapshot()
                self.dispatch(instances)

                if not self.active:
                    break
                await self.sleep(self.settings.POLL_INTERVAL_SECONDS)
        finally:
            metrics.rollout_duration_seconds.observe(self.elapsed())

    async def wait(self) -> RolloutResult:
        """Block until the loop has finished and return every recorded outcome."""
        if self._task is not None:
            await self._task
        return RolloutResult(outcomes=list(self.outcomes.values()))
