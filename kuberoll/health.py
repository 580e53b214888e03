import logging
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from kuberoll.models import (
    HARD_FAILURE_STATES,
    Instance,
    LifecycleState,
    RolloutTarget,
    TargetOutcome,
    TargetStatus,
)

if TYPE_CHECKING:
    from kuberoll.poller import ConvergencePoller

logger = logging.getLogger(__name__)


class InstanceHealth(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TRANSIENT = "transient"


class HealthState(str, Enum):
    WAITING = "waiting"
    CONVERGED = "converged"
    FAILED = "failed"


def classify(instance: Instance) -> InstanceHealth:
    if instance.state == LifecycleState.RUNNING and instance.ready:
        return InstanceHealth.SUCCEEDED
    if instance.state in HARD_FAILURE_STATES:
        return InstanceHealth.FAILED
    # ContainerCreating, Pending, Terminating and anything unrecognised.
    # A new-build pod stuck in Terminating is only ever released by the deadline.
    return InstanceHealth.TRANSIENT


class HealthStateMachine:
    """Decides, snapshot by snapshot, whether one rollout target has settled.

    Level-triggered: every snapshot is evaluated from scratch, nothing is
    carried over between ticks. Pods still on the previous build are ignored,
    they are expected to be replaced rather than judged.
    """

    def __init__(self, target: RolloutTarget, poller: "ConvergencePoller"):
        self.target = target
        self.poller = poller
        self.state = HealthState.WAITING

    def count(self, instances: Iterable[Instance]) -> tuple[int, int]:
        succeeded = failed = 0
        for instance in instances:
            if instance.name != self.target.name or instance.build != self.target.expected_build:
                continue
            health = classify(instance)
            if health == InstanceHealth.SUCCEEDED:
                succeeded += 1
            elif health == InstanceHealth.FAILED:
                failed += 1
        return succeeded, failed

    def evaluate(self, instances: Iterable[Instance]) -> TargetOutcome | None:
        """Return the outcome once counts add up to the desired replicas, else None."""
        succeeded, failed = self.count(instances)
        if succeeded + failed != self.target.deployment.desired_replicas:
            return None

        name = self.target.name
        build = self.target.expected_build
        if failed > 0:
            return TargetOutcome(
                name=name,
                status=TargetStatus.FAILED,
                expected_build=build,
                succeeded=succeeded,
                failed=failed,
                message=f"{succeeded} running, {failed} failed on build {build}",
            )
        return TargetOutcome(
            name=name,
            status=TargetStatus.CONVERGED,
            expected_build=build,
            succeeded=succeeded,
            message=f"all {succeeded} instances running build {build}",
        )

    def on_snapshot(self, instances: list[Instance]) -> None:
        if self.state != HealthState.WAITING:
            return

        outcome = self.evaluate(instances)
        if outcome is None:
            return

        extra = {"deployment": self.target.name, "build": self.target.expected_build}
        if outcome.status == TargetStatus.FAILED:
            self.state = HealthState.FAILED
            logger.error(f"Deployment {self.target.name}: {outcome.message}", extra=extra)
        else:
            self.state = HealthState.CONVERGED
            logger.info(f"Deployment {self.target.name}: {outcome.message}", extra=extra)

        self.poller.resolve(self.target.name, outcome)
