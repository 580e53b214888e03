"""Build identifiers live in image tags, by convention ``<repo>:build-<number>``."""

import re
from typing import Iterable

from kuberoll.models import Instance

# first container image line of a yaml manifest, tag ending in -<digits>
_MANIFEST_IMAGE = re.compile(
    r"^\s*(?:-\s+)?image:\s*['\"]?[^\s'\"]*:[^\s'\"/:]*-(\d+)['\"]?\s*$",
    re.MULTILINE,
)
_IMAGE_TAG = re.compile(r":[^\s/:]*-(\d+)$")

# pod name and container images, as printed by BUILD_COLUMNS
_BUILD_ROW = re.compile(r"^(\S+)\s+(\S+)")

BUILD_COLUMNS = "custom-columns=NAME:.metadata.name,IMAGE:.spec.containers[*].image"


def build_from_image(image: str) -> str | None:
    match = _IMAGE_TAG.search(image.strip().strip("'\""))
    return match.group(1) if match else None


def extract_build(text: str) -> str | None:
    """Return the build of the first tagged ``image:`` reference in ``text``."""
    match = _MANIFEST_IMAGE.search(text)
    return match.group(1) if match else None


def parse_instance_builds(text: str) -> dict[str, str | None]:
    """Map pod id to build from ``kubectl get pods <ids> -o custom-columns=...``.

    Keyed by id so a reordered or partial answer from the cluster can never
    hand one pod's build to another. Multi-container pods print their images
    comma separated; the first one carrying a build tag wins.
    """
    builds: dict[str, str | None] = {}
    for line in text.splitlines():
        match = _BUILD_ROW.match(line.strip())
        if not match or match.group(1) == "NAME":
            continue
        instance_id, images = match.groups()
        build = None
        for image in images.split(","):
            build = build_from_image(image)
            if build is not None:
                break
        builds[instance_id] = build
    return builds


def attach_builds(instances: Iterable[Instance], builds: dict[str, str | None]) -> list[Instance]:
    return [instance.with_build(builds.get(instance.id)) for instance in instances]
