"""
Rolling update orchestrator.

Resolves ``name[=build]`` requests against the deployments in the cluster,
rewrites the image build of each requested deployment and watches the pods
until every target has converged, failed, or the global deadline fires.
Requests without a build only report what is currently running.
"""

import asyncio
import logging
from dataclasses import dataclass

from kuberoll.builds import extract_build
from kuberoll.config import Settings
from kuberoll.gateway import ExecutionGateway
from kuberoll.inventory import parse_deployments
from kuberoll.models import Deployment, RolloutResult, RolloutTarget, TargetOutcome, TargetStatus
from kuberoll.poller import ConvergencePoller
from kuberoll.updater import UpdateDriver

logger = logging.getLogger(__name__)


@dataclass
class TargetRequest:
    prefix: str
    build: str | None = None

    @classmethod
    def parse(cls, arg: str) -> "TargetRequest":
        prefix, _, build = arg.partition("=")
        return cls(prefix=prefix.strip(), build=build.strip() or None)


def match_deployment(prefix: str, deployments: list[Deployment]) -> list[Deployment]:
    """Exact name wins; otherwise every deployment starting with ``prefix``."""
    for deployment in deployments:
        if deployment.name == prefix:
            return [deployment]
    lowered = prefix.lower()
    return [d for d in deployments if d.name.lower().startswith(lowered)]


class RolloutOrchestrator:
    def __init__(
        self,
        settings: Settings,
        gateway: ExecutionGateway | None = None,
        poller: ConvergencePoller | None = None,
    ):
        self.settings = settings
        self.gateway = gateway or ExecutionGateway(settings)
        self.poller = poller or ConvergencePoller(self.gateway, settings)
        self.driver = UpdateDriver(self.gateway, self.poller)
        self.reports: list[TargetOutcome] = []

    # ── Cluster Queries ───────────────────────────────────────────

    async def list_deployments(self) -> list[Deployment]:
        text = await self.gateway.run("getting deployments", ["get", "deployments"])
        return parse_deployments(text)

    async def configured_build(self, deployment: Deployment) -> str | None:
        manifest = await self.gateway.run(
            f"getting manifest of {deployment.name}",
            ["get", "deployment", deployment.name, "-o", "yaml"],
        )
        return extract_build(manifest)

    # ── Target Resolution ─────────────────────────────────────────

    def _skip(self, request: TargetRequest, status: TargetStatus, message: str) -> None:
        logger.error(message, extra={"deployment": request.prefix})
        self.reports.append(TargetOutcome(
            name=request.prefix,
            status=status,
            expected_build=request.build,
            message=message,
        ))

    def resolve_request(self, request: TargetRequest, deployments: list[Deployment]) -> Deployment | None:
        matches = match_deployment(request.prefix, deployments)
        if not matches:
            self._skip(
                request, TargetStatus.NOT_FOUND,
                f"Could not find any deployment that starts with {request.prefix}",
            )
            return None
        if len(matches) > 1:
            names = ", ".join(d.name for d in matches)
            self._skip(
                request, TargetStatus.AMBIGUOUS,
                f"More than one deployment matches '{request.prefix}': {names}",
            )
            return None
        return matches[0]

    # ── Report Mode ───────────────────────────────────────────────

    async def report(self, deployment: Deployment) -> None:
        build = deployment.build
        if build is None:
            logger.error(
                f"Cannot get build number for deployment {deployment.name}",
                extra={"deployment": deployment.name},
            )
        else:
            logger.info(
                f"Deployment {deployment.name} ({deployment.desired_replicas} desired) "
                f"is configured for build {build}",
                extra={"deployment": deployment.name, "build": build},
            )

        instances = await self.poller.snapshot({deployment.name})

        for instance in instances:
            if instance.build is None:
                logger.error(
                    f"Cannot get build number for pod {instance.id}",
                    extra={"instance": instance.id},
                )
                continue
            logger.info(
                f"Pod {instance.id} ({instance.describe()}) is on build {instance.build}",
                extra={"instance": instance.id, "build": instance.build},
            )

        self.reports.append(TargetOutcome(
            name=deployment.name,
            status=TargetStatus.REPORTED,
            expected_build=build,
            succeeded=sum(1 for i in instances if i.ready),
        ))

    # ── Rollout ───────────────────────────────────────────────────

    async def _roll(self, request: TargetRequest, deployment: Deployment) -> None:
        target = RolloutTarget(deployment=deployment, expected_build=request.build)
        extra = {"deployment": deployment.name, "build": request.build}

        if deployment.build is None:
            message = f"Cannot get build number for deployment {deployment.name}"
            logger.error(message, extra=extra)
            self.poller.resolve(deployment.name, TargetOutcome(
                name=deployment.name,
                status=TargetStatus.UNRESOLVED_BUILD,
                expected_build=request.build,
                message=message,
            ))
            return

        if deployment.build == request.build:
            logger.info(
                f"Deployment {deployment.name} is already on build {request.build}, "
                f"checking its pods...",
                extra=extra,
            )
            self.poller.watch(target)
            return

        await self.driver.update_deployment(target, deployment.build)

    async def run(self, args: list[str]) -> RolloutResult:
        requests = [TargetRequest.parse(arg) for arg in args]

        if self.settings.KUBECONFIG:
            logger.info(f"Using config {self.settings.KUBECONFIG}")
        if self.settings.NAMESPACE:
            logger.info(f"Using namespace {self.settings.NAMESPACE}")

        deployments = await self.list_deployments()

        resolved: list[tuple[TargetRequest, Deployment]] = []
        for request in requests:
            deployment = self.resolve_request(request, deployments)
            if deployment is None:
                continue
            if any(seen.name == deployment.name for _, seen in resolved):
                logger.warning(
                    f"Deployment {deployment.name} requested more than once, ignoring '{request.prefix}'",
                    extra={"deployment": deployment.name},
                )
                continue
            build = await self.configured_build(deployment)
            resolved.append((request, deployment.model_copy(update={"build": build})))

        rollouts = []
        for request, deployment in resolved:
            if request.build is None:
                await self.report(deployment)
            else:
                self.poller.track(RolloutTarget(deployment=deployment, expected_build=request.build))
                rollouts.append(self._roll(request, deployment))

        if rollouts:
            logger.info("=" * 60)
            logger.info(f"ROLLOUT: {', '.join(f'{d.name}={r.build}' for r, d in resolved if r.build)}")
            logger.info("=" * 60)
            await asyncio.gather(*rollouts)

        result = await self.poller.wait()
        result.outcomes = self.reports + result.outcomes

        if rollouts:
            logger.info("=" * 60)
            logger.info(f"ROLLOUT {'COMPLETE' if result.success else 'FAILED'}")
            logger.info("=" * 60)
        return result
