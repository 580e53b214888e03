import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from kuberoll import metrics
from kuberoll.config import Settings
from kuberoll.errors import CommandFailed, FatalQueryError

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]


class ExecutionGateway:
    """Runs kubectl with the configured context and absorbs transient failures.

    Every call is retried after ``RETRY_DELAY_SECONDS`` up to ``MAX_ATTEMPTS``
    times. When the attempts run out the caller's ``on_error`` handler is
    invoked exactly once; without a handler the failure is fatal and
    ``FatalQueryError`` propagates up to the CLI.
    """

    def __init__(self, settings: Settings, sleep: Callable[[float], Awaitable] = asyncio.sleep):
        self.settings = settings
        self.sleep = sleep

    # ── Command Execution ─────────────────────────────────────────

    def context_args(self) -> list[str]:
        args = []
        if self.settings.KUBECONFIG:
            args.append(f"--kubeconfig={self.settings.KUBECONFIG}")
        if self.settings.NAMESPACE:
            args.append(f"--namespace={self.settings.NAMESPACE}")
        return args

    def build_command(self, args: Sequence[str]) -> list[str]:
        return [self.settings.KUBECTL, *args, *self.context_args()]

    async def _spawn(self, argv: list[str], stdin: str | None) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate(
            stdin.encode() if stdin is not None else None
        )
        return process.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def execute(self, args: Sequence[str], stdin: str | None = None) -> str:
        """Run one kubectl command once. Raises CommandFailed on any error."""
        argv = self.build_command(args)
        cmd_str = " ".join(argv)
        logger.debug(f"  $ {cmd_str}")
        try:
            returncode, stdout, stderr = await self._spawn(argv, stdin)
        except OSError as e:
            raise CommandFailed(cmd_str, None, str(e)) from e

        if returncode != 0 or stderr.strip():
            raise CommandFailed(cmd_str, returncode, stderr.strip())
        return stdout

    # ── Retry Policy ──────────────────────────────────────────────

    async def attempt(
        self,
        label: str,
        operation: Callable[[], Awaitable],
        on_error: ErrorHandler | None = None,
    ):
        max_attempts = max(1, self.settings.MAX_ATTEMPTS)
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                result = await operation()
            except CommandFailed as e:
                last_error = e
                metrics.record_command(label, ok=False)
                logger.warning(
                    f"Network error when {label} (attempt {attempt}/{max_attempts})",
                    extra={"label": label, "attempt": attempt},
                )
                logger.debug(str(e))
                if attempt < max_attempts:
                    metrics.record_retry(label)
                    await self.sleep(self.settings.RETRY_DELAY_SECONDS)
                continue

            metrics.record_command(label, ok=True)
            return result

        error = FatalQueryError(label, max_attempts, last_error)
        if on_error is not None:
            on_error(error)
            return None

        logger.critical(f"Giving up on {label} after {max_attempts} attempts: {last_error}")
        raise error

    async def run(
        self,
        label: str,
        args: Sequence[str],
        on_error: ErrorHandler | None = None,
        stdin: str | None = None,
    ) -> str | None:
        return await self.attempt(label, lambda: self.execute(args, stdin), on_error)
