"""Parsers for the tabular output of ``kubectl get pods`` and ``kubectl get deployments``.

Lines that do not have the expected shape (headers, blank lines, warnings)
are skipped without complaint.
"""

import re

from kuberoll.models import Deployment, Instance, LifecycleState

# NAME  READY  STATUS  RESTARTS  AGE
_INSTANCE_LINE = re.compile(r"^(\S+)\s+(\d+)/(\d+)\s+(\S+)\s+(\d+)")

# NAME  READY  UP-TO-DATE  AVAILABLE  AGE        (current kubectl)
# NAME  DESIRED  CURRENT  UP-TO-DATE  AVAILABLE  (older kubectl)
_DEPLOYMENT_LINE = re.compile(r"^(\S+)\s+(?:(\d+)/(\d+)|(\d+))\s")

# replica-set hash segment followed by the five character pod suffix
_GENERATED_SUFFIX = re.compile(r"^(.+)-[a-z0-9]+-[a-z0-9]{5}$")


def derive_name(instance_id: str) -> str:
    match = _GENERATED_SUFFIX.match(instance_id)
    return match.group(1) if match else instance_id


def parse_instances(text: str) -> list[Instance]:
    instances = []
    for line in text.splitlines():
        match = _INSTANCE_LINE.match(line.strip())
        if not match:
            continue
        instance_id, ready_count, total_count, status, restarts = match.groups()
        instances.append(Instance(
            id=instance_id,
            name=derive_name(instance_id),
            ready=int(ready_count) == int(total_count),
            state=LifecycleState.from_status(status),
            raw_state=status,
            restarts=int(restarts),
        ))
    return instances


def parse_deployments(text: str) -> list[Deployment]:
    deployments = []
    for line in text.splitlines():
        match = _DEPLOYMENT_LINE.match(line.strip() + " ")
        if not match:
            continue
        name, _ready, desired_of_ready, desired = match.groups()
        deployments.append(Deployment(
            name=name,
            desired_replicas=int(desired_of_ready if desired_of_ready is not None else desired),
        ))
    return deployments
