from enum import Enum

from pydantic import BaseModel, ConfigDict


class LifecycleState(str, Enum):
    RUNNING = "Running"
    PENDING = "Pending"
    CONTAINER_CREATING = "ContainerCreating"
    TERMINATING = "Terminating"
    CRASH_LOOP_BACK_OFF = "CrashLoopBackOff"
    ERROR = "Error"
    UNKNOWN = "Unknown"

    @classmethod
    def from_status(cls, status: str) -> "LifecycleState":
        try:
            return cls(status)
        except ValueError:
            return cls.UNKNOWN


HARD_FAILURE_STATES = frozenset({LifecycleState.ERROR, LifecycleState.CRASH_LOOP_BACK_OFF})


class Instance(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    ready: bool
    state: LifecycleState
    raw_state: str
    restarts: int = 0
    build: str | None = None

    def with_build(self, build: str | None) -> "Instance":
        return self.model_copy(update={"build": build})

    def describe(self) -> str:
        readiness = "Ready" if self.ready else "Not ready"
        return f"{readiness}, {self.raw_state}"


class Deployment(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    desired_replicas: int
    build: str | None = None


class RolloutTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    deployment: Deployment
    expected_build: str

    @property
    def name(self) -> str:
        return self.deployment.name


class TargetStatus(str, Enum):
    CONVERGED = "converged"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    UPDATE_FAILED = "update_failed"
    UNRESOLVED_BUILD = "unresolved_build"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    REPORTED = "reported"

    @property
    def ok(self) -> bool:
        return self in (TargetStatus.CONVERGED, TargetStatus.REPORTED)


class TargetOutcome(BaseModel):
    name: str
    status: TargetStatus
    expected_build: str | None = None
    succeeded: int = 0
    failed: int = 0
    message: str = ""


class RolloutResult(BaseModel):
    outcomes: list[TargetOutcome] = []

    @property
    def success(self) -> bool:
        return all(outcome.status.ok for outcome in self.outcomes)

    def outcome_for(self, name: str) -> TargetOutcome | None:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None
