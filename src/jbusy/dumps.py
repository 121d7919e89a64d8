"""Collecting jstack dumps of the processes owning busy threads."""

import logging
from pathlib import Path

import psutil

from jbusy.commands import CommandRunner, current_user, is_privileged
from jbusy.config import Config
from jbusy.errors import CommandError, DumpFailure, DumpPermissionDenied, JbusyError
from jbusy.models import ThreadSample

logger = logging.getLogger(__name__)


class DirectFetcher:
    """Runs jstack as the caller, who owns the java process."""

    def __init__(self, jstack: list[str], runner: CommandRunner) -> None:
        self._jstack = jstack
        self._runner = runner

    def command(self, sample: ThreadSample) -> list[str]:
        return [*self._jstack, str(sample.pid)]

    def fetch(self, sample: ThreadSample, output_path: Path) -> str:
        """Dump the process of sample into output_path and return the dump."""
        return self._runner.run(self.command(sample), output_path=output_path)


class ImpersonatedFetcher(DirectFetcher):
    """Runs jstack through sudo as the owner of the java process.

    jstack can only attach to a JVM running as the same user, so a
    privileged caller has to switch to the owner first.
    """

    def command(self, sample: ThreadSample) -> list[str]:
        return ["sudo", "-u", sample.user, *super().command(sample)]


class DeniedFetcher:
    """Stands in for jstack when the caller cannot dump another user's process."""

    def __init__(self, caller: str) -> None:
        self._caller = caller

    def fetch(self, sample: ThreadSample, output_path: Path) -> str:
        raise DumpPermissionDenied(sample.pid, sample.user, self._caller)


Fetcher = DirectFetcher | DeniedFetcher


def select_fetcher(
    owner: str,
    caller: str,
    privileged: bool,
    jstack: list[str],
    runner: CommandRunner,
) -> Fetcher:
    """Pick how to dump a process owned by owner when running as caller."""
    if owner == caller:
        return DirectFetcher(jstack, runner)
    if privileged:
        return ImpersonatedFetcher(jstack, runner)
    return DeniedFetcher(caller)


class DumpCollector:
    """
    Fetches and caches jstack dumps, one per java process per round.

    Dumps are written to the run's scratch directory. Within a round each
    process is dumped at most once, so threads sharing a process share the
    dump, and a failed dump is not retried until the next round. Nothing is
    reused across rounds, since a busy thread's stack moves on.
    """

    def __init__(
        self,
        config: Config,
        workdir: Path,
        runner: CommandRunner | None = None,
        caller: str | None = None,
        privileged: bool | None = None,
    ) -> None:
        """
        Initialize the DumpCollector.

        Args:
            config: Run settings (jstack path and flags).
            workdir: Directory to write the dump files to.
            runner: Runs jstack and sudo. Defaults to a plain CommandRunner.
            caller: Name of the current user. Defaults to the effective user.
            privileged: Whether sudo may be used. Defaults to running as root.
        """
        self._jstack = [config.jstack_path, *config.jstack_options()]
        self._workdir = workdir
        self._runner = runner or CommandRunner()
        self._caller = caller if caller is not None else current_user()
        self._privileged = privileged if privileged is not None else is_privileged()
        self._round = 0
        self._cache: dict[tuple[int, int], str | JbusyError] = {}

    def start_round(self, round_no: int) -> None:
        """Forget the dumps of earlier rounds."""
        self._round = round_no
        self._cache = {key: value for key, value in self._cache.items() if key[0] == round_no}

    def dump_path(self, round_no: int, pid: int) -> Path:
        return self._workdir / f"jstack_{round_no}_{pid}.txt"

    def collect(self, round_no: int, sample: ThreadSample) -> str:
        """
        Get the dump of the process owning sample for this round.

        Raises:
            DumpPermissionDenied: The process belongs to another user and the
                caller is not privileged.
            DumpFailure: The process exited or jstack failed.
        """
        if round_no != self._round:
            self.start_round(round_no)

        key = (round_no, sample.pid)
        if key not in self._cache:
            try:
                self._cache[key] = self._fetch(round_no, sample)
            except (DumpPermissionDenied, DumpFailure) as exc:
                self._cache[key] = exc

        cached = self._cache[key]
        if isinstance(cached, JbusyError):
            raise cached
        return cached

    def _fetch(self, round_no: int, sample: ThreadSample) -> str:
        fetcher = select_fetcher(sample.user, self._caller, self._privileged, self._jstack, self._runner)
        if not psutil.pid_exists(sample.pid):
            raise DumpFailure(sample.pid, "process exited")

        logger.debug("dumping java process %d with %s", sample.pid, type(fetcher).__name__)
        try:
            return fetcher.fetch(sample, self.dump_path(round_no, sample.pid))
        except CommandError as exc:
            reason = exc.stderr.strip() or exc.stdout.strip() or str(exc)
            raise DumpFailure(sample.pid, reason.splitlines()[-1]) from exc
