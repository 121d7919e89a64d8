"""Running the external commands jbusy depends on (ps, top, jstack, sudo)."""

import logging
import os
import pwd
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from jbusy.errors import CommandError

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "utf-8"


class CommandRunner:
    """
    Runs external commands and returns their standard output.

    The output of ps and top is parsed by column, so every command runs
    under the C locale. Extra environment variables can be layered on top.
    """

    def __init__(self, timeout: float | None = None) -> None:
        """
        Initialize the CommandRunner.

        Args:
            timeout: Seconds to wait for a command before giving up. None waits forever.
        """
        self._timeout = timeout

    def run(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        output_path: Path | None = None,
    ) -> str:
        """
        Run a command to completion.

        Args:
            args: Program and arguments.
            env: Extra environment variables for the child.
            output_path: When given, stdout is written to this file instead of
                being captured, and the file is removed if the command fails.

        Returns:
            The captured stdout, or the contents of output_path.

        Raises:
            CommandError: The command could not be started or exited non-zero.
        """
        args = [str(arg) for arg in args]
        child_env = os.environ.copy()
        child_env["LC_ALL"] = "C"
        if env:
            child_env.update(env)
        logger.debug("running %s", " ".join(args))

        if output_path is None:
            return self._run_captured(args, child_env)
        return self._run_to_file(args, child_env, output_path)

    def _run_captured(self, args: list[str], env: dict[str, str]) -> str:
        try:
            proc = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise CommandError(args, None, str(exc)) from exc

        stdout = proc.stdout.decode(DEFAULT_ENCODING, errors="replace")
        stderr = proc.stderr.decode(DEFAULT_ENCODING, errors="replace")
        if proc.returncode != 0:
            raise CommandError(args, proc.returncode, stderr, stdout)
        return stdout

    def _run_to_file(self, args: list[str], env: dict[str, str], output_path: Path) -> str:
        try:
            with open(output_path, "wb") as out:
                proc = subprocess.run(
                    args,
                    stdout=out,
                    stderr=subprocess.PIPE,
                    env=env,
                    timeout=self._timeout,
                    check=False,
                )
        except (OSError, subprocess.TimeoutExpired) as exc:
            output_path.unlink(missing_ok=True)
            raise CommandError(args, None, str(exc)) from exc

        if proc.returncode != 0:
            stdout = output_path.read_text(encoding=DEFAULT_ENCODING, errors="replace")
            output_path.unlink(missing_ok=True)
            stderr = proc.stderr.decode(DEFAULT_ENCODING, errors="replace")
            raise CommandError(args, proc.returncode, stderr, stdout)
        return output_path.read_text(encoding=DEFAULT_ENCODING, errors="replace")


def current_user() -> str:
    """Name of the effective user, as whoami reports it."""
    uid = os.geteuid()
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def is_privileged() -> bool:
    """Whether the caller may impersonate other users through sudo."""
    return os.geteuid() == 0
