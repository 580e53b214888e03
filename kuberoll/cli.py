"""
kuberoll - rolling build updates for Kubernetes deployments

Usage:
    kuberoll api=1234 worker=1234               # Update both, wait for the new pods
    kuberoll api                                # Show which build api is running
    kuberoll --namespace=prod --timeout=300 api=1235
"""

import argparse
import asyncio
import logging
import sys

from kuberoll import metrics
from kuberoll.config import Settings, settings as default_settings
from kuberoll.errors import RolloutError
from kuberoll.logging_config import setup_logging
from kuberoll.orchestrator import RolloutOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kuberoll",
        description="Rolling build updates for Kubernetes deployments",
    )
    parser.add_argument(
        "targets",
        nargs="+",
        metavar="name[=build]",
        help="Deployment name (or unique prefix), optionally with the build to roll out",
    )
    parser.add_argument("--namespace", help="Kubernetes namespace")
    parser.add_argument("--kubeconfig", help="Path to the kubeconfig file")
    parser.add_argument(
        "--timeout",
        type=float,
        help=f"Seconds to wait for every target to converge (default: {default_settings.TIMEOUT_SECONDS:g})",
    )
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings) -> Settings:
    overrides = {}
    if args.namespace:
        overrides["NAMESPACE"] = args.namespace
    if args.kubeconfig:
        overrides["KUBECONFIG"] = args.kubeconfig
    if args.timeout is not None:
        overrides["TIMEOUT_SECONDS"] = args.timeout
    return base.model_copy(update=overrides)


def main(argv: list[str] | None = None, base: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args, base or default_settings)
    setup_logging(settings)

    orchestrator = RolloutOrchestrator(settings)
    try:
        result = asyncio.run(orchestrator.run(args.targets))
    except RolloutError as e:
        print(f"\nRollout error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted by user.", file=sys.stderr)
        return 130
    finally:
        if settings.METRICS_FILE:
            metrics.write_metrics(settings.METRICS_FILE)

    for outcome in result.outcomes:
        if not outcome.status.ok:
            logger.error(f"{outcome.name}: {outcome.status.value} {outcome.message}".rstrip())
    return 0 if result.success else 1


def run() -> None:
    sys.exit(main())
