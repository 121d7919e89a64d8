"""Command line parsing and environment checks for jbusy."""

import argparse
import os
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import psutil

from jbusy.errors import PreconditionError, UsageError
from jbusy.models import DumpMode

VERSION = "0.1.0"
DEFAULT_THREAD_COUNT = 5
DEFAULT_TOP_DELAY = 0.5
PROG = "jbusy"

EPILOG = """\
examples:
  jbusy                 # show the 5 busiest java threads once
  jbusy 1               # refresh every second, forever
  jbusy 3 10            # refresh every 3 seconds, 10 times
  jbusy -c 10 -p 4711   # show the 10 busiest threads of java process 4711
  jbusy -a busy.log 5   # refresh every 5 seconds, also append to busy.log
"""


@dataclass(slots=True, frozen=True)
class Config:
    """Settings for one jbusy run, shared by every component."""

    delay: float = 0.0
    rounds: int = 1  # 0 means run until interrupted
    thread_count: int = DEFAULT_THREAD_COUNT
    pid: int | None = None
    append_file: Path | None = None
    use_ps: bool = False
    top_delay: float = DEFAULT_TOP_DELAY
    jstack_path: str = "jstack"
    force: bool = False
    mix_native_frames: bool = False
    lock_info: bool = False
    current_user_only: bool = False
    debug: bool = False
    command_line: str = PROG

    @property
    def dump_mode(self) -> DumpMode:
        """Delimiter mode matching the jstack flags in use."""
        return DumpMode.from_flags(self.mix_native_frames, self.force)

    @property
    def infinite(self) -> bool:
        return self.rounds == 0

    def jstack_options(self) -> list[str]:
        """Extra jstack flags, in the order jstack documents them."""
        options = []
        if self.mix_native_frames:
            options.append("-m")
        if self.force:
            options.append("-F")
        if self.lock_info:
            options.append("-l")
        return options


class ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting with status 2."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise UsageError(message)


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value!r}")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value!r}")
    return number


def _positive_int(value: str) -> int:
    number = _non_negative_int(value)
    if number == 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value!r}")
    return number


def build_parser() -> ArgumentParser:
    """Build the jbusy argument parser."""
    parser = ArgumentParser(
        prog=PROG,
        description="Find out the highest cpu consumed threads of java processes, and print their stack traces.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "delay",
        nargs="?",
        type=_non_negative_float,
        help="delay between rounds in seconds; without a delay a single round runs",
    )
    parser.add_argument(
        "count",
        nargs="?",
        type=_non_negative_int,
        help="number of rounds; 0 or omitted (with a delay) runs until interrupted",
    )
    parser.add_argument("-p", "--pid", type=_positive_int, help="only look at this java process")
    parser.add_argument(
        "-c",
        "--count",
        dest="thread_count",
        type=_positive_int,
        default=DEFAULT_THREAD_COUNT,
        help=f"number of threads to show per round (default: {DEFAULT_THREAD_COUNT})",
    )
    parser.add_argument("-a", "--append-file", type=Path, help="also append the output to FILE")
    parser.add_argument(
        "-P",
        "--use-ps",
        action="store_true",
        help="rank threads by cumulative cpu usage from ps instead of instantaneous usage from top",
    )
    parser.add_argument(
        "-d",
        "--top-delay",
        type=_non_negative_float,
        default=DEFAULT_TOP_DELAY,
        help=f"seconds between the two top samples (default: {DEFAULT_TOP_DELAY})",
    )
    parser.add_argument("-s", "--jstack-path", help="path of the jstack command")
    parser.add_argument("-F", "--force", action="store_true", help="force a thread dump (jstack -F)")
    parser.add_argument(
        "-m",
        "--mix-native-frames",
        action="store_true",
        help="print both java and native frames (jstack -m)",
    )
    parser.add_argument("-l", "--lock-info", action="store_true", help="print extra lock information (jstack -l)")
    parser.add_argument(
        "--current-user",
        action="store_true",
        help="only look at java processes of the current user",
    )
    parser.add_argument("--debug", action="store_true", help="log the external commands being run")
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def parse_config(argv: Sequence[str], environ: Mapping[str, str] | None = None) -> Config:
    """
    Turn command line arguments into a Config.

    Args:
        argv: Arguments without the program name.
        environ: Environment used to locate jstack. Defaults to os.environ.

    Raises:
        UsageError: The arguments are invalid.
        PreconditionError: The host is not Linux, or jstack cannot be found or executed.
    """
    args = build_parser().parse_intermixed_args(list(argv))
    check_platform()

    if args.delay is None:
        delay, rounds = 0.0, 1
    else:
        delay = args.delay
        rounds = args.count if args.count is not None else 0

    return Config(
        delay=delay,
        rounds=rounds,
        thread_count=args.thread_count,
        pid=args.pid,
        append_file=args.append_file,
        use_ps=args.use_ps,
        top_delay=args.top_delay,
        jstack_path=resolve_jstack(args.jstack_path, os.environ if environ is None else environ),
        force=args.force,
        mix_native_frames=args.mix_native_frames,
        lock_info=args.lock_info,
        current_user_only=args.current_user,
        debug=args.debug,
        command_line=" ".join([PROG, *argv]),
    )


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def resolve_jstack(explicit: str | None, environ: Mapping[str, str]) -> str:
    """
    Locate the jstack executable.

    An explicit path must point at an executable file. Otherwise
    $JAVA_HOME/bin/jstack is preferred over the jstack found on PATH.
    """
    if explicit is not None:
        path = Path(explicit)
        if not path.exists():
            raise PreconditionError(f"jstack path {explicit} does not exist")
        if not _is_executable(path):
            raise PreconditionError(f"jstack path {explicit} is not an executable file")
        return str(path)

    java_home = environ.get("JAVA_HOME")
    if java_home:
        candidate = Path(java_home) / "bin" / "jstack"
        if _is_executable(candidate):
            return str(candidate)

    found = shutil.which("jstack", path=environ.get("PATH"))
    if found is None:
        raise PreconditionError(
            "jstack not found in $JAVA_HOME/bin or on PATH; "
            "set JAVA_HOME or use -s/--jstack-path to point at it"
        )
    return found


def check_platform() -> None:
    """Fail unless running on Linux, where ps -L and top -H behave as expected."""
    if not psutil.LINUX:
        raise PreconditionError("jbusy only supports Linux")


def check_pid(pid: int | None) -> None:
    """Fail if a pid filter names a process that is not running."""
    if pid is not None and not psutil.pid_exists(pid):
        raise PreconditionError(f"process {pid} does not exist")
