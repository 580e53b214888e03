import logging
import re

from kuberoll.errors import ParseMismatch
from kuberoll.gateway import ExecutionGateway
from kuberoll.models import RolloutTarget, TargetOutcome, TargetStatus
from kuberoll.poller import ConvergencePoller

logger = logging.getLogger(__name__)

# group 2 is the image reference of the first container
_IMAGE_LINE = re.compile(r"^(\s*(?:-\s+)?image:\s*['\"]?)([^\s'\"]+)", re.MULTILINE)


def rewrite_build(manifest: str, build: str) -> str:
    """Point the first container image of ``manifest`` at ``build-<build>``."""
    match = _IMAGE_LINE.search(manifest)
    if not match:
        raise ParseMismatch("No image reference found in manifest")

    # a digest pins the image, drop it before re-tagging
    image = match.group(2).split("@", 1)[0]
    repository, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        # untagged, the colon (if any) belongs to a registry port
        repository = image
    return f"{manifest[:match.start(2)]}{repository}:build-{build}{manifest[match.end(2):]}"


class UpdateDriver:
    def __init__(self, gateway: ExecutionGateway, poller: ConvergencePoller):
        self.gateway = gateway
        self.poller = poller

    async def _fetch_rewrite_apply(self, target: RolloutTarget) -> str:
        # fetch and apply are retried together so a failed apply never runs
        # against a stale manifest
        manifest = await self.gateway.execute(["get", "deployment", target.name, "-o", "yaml"])
        rewritten = rewrite_build(manifest, target.expected_build)
        return await self.gateway.execute(["replace", "-f", "-"], stdin=rewritten)

    def _fail(self, target: RolloutTarget, message: str) -> None:
        logger.error(
            f"Error while updating {target.name}: {message}",
            extra={"deployment": target.name, "build": target.expected_build},
        )
        self.poller.resolve(target.name, TargetOutcome(
            name=target.name,
            status=TargetStatus.UPDATE_FAILED,
            expected_build=target.expected_build,
            message=message,
        ))

    async def update_deployment(self, target: RolloutTarget, original_build: str | None) -> bool:
        """Rewrite the deployment's image build and hand the target to the poller.

        Returns False when the mutation could not be applied; the target is
        then already retired from the active set.
        """
        self.poller.track(target)
        failures: list[Exception] = []

        try:
            applied = await self.gateway.attempt(
                f"updating {target.name}",
                lambda: self._fetch_rewrite_apply(target),
                on_error=failures.append,
            )
        except ParseMismatch as e:
            self._fail(target, str(e))
            return False

        if failures:
            self._fail(target, str(failures[0]))
            return False

        logger.debug(applied.strip())
        logger.info(
            f"Deployment {target.name} has been updated from build {original_build} "
            f"to build {target.expected_build}, waiting for it to restart...",
            extra={"deployment": target.name, "build": target.expected_build},
        )
        self.poller.watch(target)
        return True
