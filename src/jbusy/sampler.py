"""Per-thread CPU sampling of java processes, via ps or top."""

import logging
from pathlib import Path

import psutil

from jbusy.commands import CommandRunner, current_user
from jbusy.config import Config
from jbusy.errors import CommandError
from jbusy.models import ThreadSample

logger = logging.getLogger(__name__)

JAVA_PROCESS_NAME = "java"
PS_FIELDS = "pid,lwp,pcpu,user:64"
# top refuses more pids than this with -p
TOP_MAX_PIDS = 20


def is_java_process(pid: int) -> bool:
    """Whether pid is a running java process."""
    try:
        return psutil.Process(pid).name() == JAVA_PROCESS_NAME
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return False


def rank_samples(samples: list[ThreadSample], count: int) -> list[ThreadSample]:
    """Order samples by cpu usage, busiest first, keeping at most count of them."""
    return sorted(samples, key=lambda s: s.cpu_percent, reverse=True)[:count]


def parse_ps_output(text: str) -> list[ThreadSample]:
    """
    Parse ``ps -Lo pid,lwp,pcpu,user --no-headers`` output.

    Lines that do not have the expected fields are skipped.
    """
    samples: list[ThreadSample] = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        try:
            samples.append(
                ThreadSample(
                    pid=int(fields[0]),
                    tid=int(fields[1]),
                    cpu_percent=float(fields[2]),
                    user=fields[3],
                )
            )
        except ValueError:
            logger.debug("skipping unparsable ps line: %r", line)
    return samples


def parse_top_output(text: str) -> list[tuple[int, float]]:
    """
    Parse batch mode ``top -H`` output into (thread id, cpu%) pairs.

    top prints one table per iteration. Only the last table is used, since
    the first iteration of top reports usage since thread start rather than
    over the sampling delay. Columns are located from the table header.
    """
    lines = text.splitlines()
    header_index = None
    for index, line in enumerate(lines):
        fields = line.split()
        if fields and fields[0] == "PID" and "%CPU" in fields:
            header_index = index
    if header_index is None:
        return []

    header = lines[header_index].split()
    pid_column = header.index("PID")
    cpu_column = header.index("%CPU")

    rows: list[tuple[int, float]] = []
    for line in lines[header_index + 1 :]:
        fields = line.split()
        if not fields:
            break
        if len(fields) <= max(pid_column, cpu_column):
            continue
        try:
            rows.append((int(fields[pid_column]), float(fields[cpu_column])))
        except ValueError:
            logger.debug("skipping unparsable top line: %r", line)
    return rows


class ThreadSampler:
    """
    Finds the busiest threads of the java processes on this host.

    In ps mode threads are ranked by cumulative cpu usage. In top mode they
    are ranked by instantaneous usage measured over the top delay, and ps is
    only used to map thread ids back to their process and owner.
    """

    def __init__(self, config: Config, runner: CommandRunner | None = None) -> None:
        """
        Initialize the ThreadSampler.

        Args:
            config: Run settings (pid filter, thread count, ps or top mode).
            runner: Runs ps and top. Defaults to a plain CommandRunner.
        """
        self._config = config
        self._runner = runner or CommandRunner()

    def sample(self, workdir: Path) -> list[ThreadSample]:
        """
        Take one sample of java thread cpu usage.

        Args:
            workdir: Scratch directory of the run; used as HOME for top.

        Returns:
            At most thread_count samples, busiest first.
        """
        pids = self.java_pids()
        if not pids:
            logger.info("no java process found")
            return []

        listing = self._ps_listing(pids)
        if not listing:
            return []
        if self._config.use_ps:
            return rank_samples(listing, self._config.thread_count)
        return self._sample_top(pids, listing, workdir)

    def java_pids(self) -> list[int]:
        """List the pids of the java processes to look at."""
        if self._config.pid is not None:
            if not is_java_process(self._config.pid):
                logger.info("process %d is not a java process", self._config.pid)
                return []
            return [self._config.pid]

        caller = current_user() if self._config.current_user_only else None
        pids: list[int] = []
        for proc in psutil.process_iter(attrs=["pid", "name", "username"]):
            try:
                info = proc.info
                if info.get("name") != JAVA_PROCESS_NAME:
                    continue
                if caller is not None and info.get("username") != caller:
                    continue
                pids.append(info["pid"])
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return sorted(pids)

    def _ps_listing(self, pids: list[int]) -> list[ThreadSample]:
        """List every thread of the given processes with its cpu usage and owner."""
        args = ["ps", "-Lo", PS_FIELDS, "--no-headers", "-p", ",".join(str(pid) for pid in pids)]
        try:
            output = self._runner.run(args)
        except CommandError as exc:
            # ps exits 1 with no output once none of the pids is alive
            if exc.returncode == 1 and not exc.stdout.strip():
                return []
            raise
        return parse_ps_output(output)

    def _sample_top(self, pids: list[int], listing: list[ThreadSample], workdir: Path) -> list[ThreadSample]:
        """Rank threads by the cpu usage top measures over the top delay."""
        args = ["top", "-H", "-b", "-d", str(self._config.top_delay), "-n", "2"]
        if len(pids) <= TOP_MAX_PIDS:
            args += ["-p", ",".join(str(pid) for pid in pids)]
        # A private HOME keeps a personal .toprc from changing the columns
        output = self._runner.run(args, env={"HOME": str(workdir)})

        by_tid = {sample.tid: sample for sample in listing}
        samples: list[ThreadSample] = []
        for tid, cpu_percent in sorted(parse_top_output(output), key=lambda row: row[1], reverse=True):
            if len(samples) >= self._config.thread_count:
                break
            match = by_tid.get(tid)
            if match is None:
                continue
            samples.append(ThreadSample(pid=match.pid, tid=tid, cpu_percent=cpu_percent, user=match.user))
        return samples
