"""jbusy - find the busiest java threads and print their stacks."""

import logging
import signal
import sys
import tempfile
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import IO

from rich.console import Console
from rich.text import Text

from jbusy.commands import CommandRunner
from jbusy.config import Config, build_parser, check_pid, parse_config
from jbusy.dumps import DumpCollector
from jbusy.errors import CommandError, DumpFailure, DumpPermissionDenied, PreconditionError, UsageError
from jbusy.extract import extract_stack
from jbusy.models import StackBlock, ThreadSample
from jbusy.sampler import ThreadSampler

logger = logging.getLogger(__name__)

BANNER_WIDTH = 80
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class DriverState(Enum):
    """States of the sample and report loop."""

    IDLE = "idle"
    SAMPLING = "sampling"
    REPORTING = "reporting"
    SLEEPING = "sleeping"
    DONE = "done"


class Reporter:
    """
    Prints rounds to the terminal and, optionally, appends them to a file.

    The terminal gets colors; the append file gets the same text without
    them. Dump text is printed verbatim, since jstack output is full of
    brackets rich would otherwise read as markup.
    """

    def __init__(self, console: Console | None = None, append_file: Path | None = None) -> None:
        """
        Initialize the Reporter.

        Args:
            console: Terminal console. Defaults to stdout.
            append_file: File to append a plain copy of the output to.
        """
        self._console = console or Console(highlight=False, soft_wrap=True)
        self._append_file = append_file
        self._file: IO[str] | None = None
        self._consoles: list[Console] = [self._console]

    def __enter__(self) -> "Reporter":
        if self._append_file is not None:
            try:
                self._file = open(self._append_file, "a", encoding="utf-8")
            except OSError as exc:
                raise PreconditionError(f"cannot append to {self._append_file}: {exc.strerror}") from exc
            self._consoles.append(Console(file=self._file, no_color=True, highlight=False, soft_wrap=True))
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._consoles = [self._console]

    def _print(self, text: str | Text = "", style: str | None = None) -> None:
        for console in self._consoles:
            console.print(text, style=style, markup=False, highlight=False)

    def banner(self, round_no: int, rounds: int, command_line: str) -> None:
        """Print the header of a round when more than one round runs."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        progress = f"{round_no}/{rounds}" if rounds else str(round_no)
        self._print("=" * BANNER_WIDTH, style="magenta")
        self._print(f"{timestamp} [{progress}]: {command_line}", style="bold magenta")
        self._print("=" * BANNER_WIDTH, style="magenta")
        self._print()

    def thread(self, index: int, sample: ThreadSample, block: StackBlock | None) -> None:
        """Print one busy thread and, when found, its stack."""
        heading = Text.assemble(
            (f"[{index}] ", "bold"),
            (f"Busy({sample.cpu_percent}%)", "bold red"),
            f" thread({sample.tid}/{sample.hex_tid}) stack of java process({sample.pid}) under user({sample.user}):",
        )
        self._print(heading, style="yellow")
        if block is not None:
            self._print(block.text)
        self._print()

    def warning(self, message: str, hint: str | None = None) -> None:
        self._print(message, style="bold red")
        if hint is not None:
            self._print(hint, style="yellow")
        self._print()

    def nothing_found(self) -> None:
        self._print("No busy java thread found.", style="yellow")
        self._print()


class BusyThreadsDriver:
    """
    Runs rounds of sampling and reporting until the round count is used up.

    A round samples thread cpu usage, dumps each process owning a busy
    thread once and prints every busy thread's stack. A thread that cannot
    be dumped is reported and skipped; the round goes on. The scratch
    directory for dumps lives exactly as long as run(), including when it
    is left through KeyboardInterrupt.
    """

    def __init__(
        self,
        config: Config,
        reporter: Reporter,
        runner: CommandRunner | None = None,
        caller: str | None = None,
        privileged: bool | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        """
        Initialize the BusyThreadsDriver.

        Args:
            config: Run settings.
            reporter: Where rounds are printed.
            runner: Runs ps, top, jstack and sudo.
            caller: Current user name, see DumpCollector.
            privileged: Whether sudo may be used, see DumpCollector.
            sleep: Blocks between rounds. Defaults to time.sleep.
        """
        self._config = config
        self._reporter = reporter
        self._runner = runner or CommandRunner()
        self._caller = caller
        self._privileged = privileged
        self._sleep = sleep or time.sleep
        self.state = DriverState.IDLE
        self.workdir: Path | None = None
        self.rounds_done = 0

    def run(self) -> None:
        """Run every round; the scratch directory is removed on the way out."""
        config = self._config
        sampler = ThreadSampler(config, self._runner)
        try:
            with tempfile.TemporaryDirectory(prefix="jbusy-") as tmp:
                self.workdir = Path(tmp)
                collector = DumpCollector(config, self.workdir, self._runner, self._caller, self._privileged)
                while True:
                    self.state = DriverState.SAMPLING
                    round_no = self.rounds_done + 1
                    samples = sampler.sample(self.workdir)

                    self.state = DriverState.REPORTING
                    self._report_round(round_no, samples, collector)
                    self.rounds_done = round_no
                    if not config.infinite and round_no >= config.rounds:
                        break

                    self.state = DriverState.SLEEPING
                    self._sleep(config.delay)
        finally:
            self.state = DriverState.DONE

    def _report_round(self, round_no: int, samples: list[ThreadSample], collector: DumpCollector) -> None:
        config = self._config
        if config.rounds != 1:
            self._reporter.banner(round_no, config.rounds, config.command_line)
        if not samples:
            self._reporter.nothing_found()
            return

        collector.start_round(round_no)
        for index, sample in enumerate(samples, start=1):
            try:
                dump = collector.collect(round_no, sample)
            except DumpPermissionDenied as exc:
                self._reporter.warning(
                    f"[{index}] Fail to jstack busy({sample.cpu_percent}%) thread({sample.tid}/{sample.hex_tid}): {exc}",
                    hint=f"Try again as root: sudo {config.command_line}",
                )
                continue
            except DumpFailure as exc:
                self._reporter.warning(
                    f"[{index}] Fail to jstack busy({sample.cpu_percent}%) thread({sample.tid}/{sample.hex_tid}): {exc}"
                )
                continue
            self._reporter.thread(index, sample, extract_stack(dump, sample, config.dump_mode))


def _raise_interrupt(signum: int, frame: object) -> None:
    raise KeyboardInterrupt


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for jbusy."""
    argv = sys.argv[1:] if argv is None else list(argv)
    errors = Console(stderr=True, highlight=False, soft_wrap=True)

    try:
        config = parse_config(argv)
    except UsageError as exc:
        build_parser().print_usage(sys.stderr)
        errors.print(f"jbusy: error: {exc}", style="red", markup=False)
        return EXIT_FAILURE
    except PreconditionError as exc:
        errors.print(f"jbusy: {exc}", style="bold red", markup=False)
        return EXIT_FAILURE

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        check_pid(config.pid)
        with Reporter(append_file=config.append_file) as reporter:
            BusyThreadsDriver(config, reporter).run()
    except PreconditionError as exc:
        errors.print(f"jbusy: {exc}", style="bold red", markup=False)
        return EXIT_FAILURE
    except CommandError as exc:
        logger.debug("sampling failed", exc_info=True)
        errors.print(f"jbusy: {exc}", style="bold red", markup=False)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    finally:
        signal.signal(signal.SIGTERM, previous_handler)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
