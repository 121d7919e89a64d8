"""Exception hierarchy for jbusy."""


class JbusyError(Exception):
    """Base class for all jbusy errors."""


class UsageError(JbusyError):
    """Bad command line flags or arguments."""


class PreconditionError(JbusyError):
    """The host cannot run jbusy (wrong OS, missing dump tool, bad pid)."""


class CommandError(JbusyError):
    """An external command failed or could not be started."""

    def __init__(self, args: list[str], returncode: int | None, stderr: str = "", stdout: str = "") -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        if returncode is None:
            message = f"could not run {self.command[0]}: {stderr}"
        else:
            message = f"{' '.join(self.command)} exited with code {returncode}"
            if stderr.strip():
                message += f": {stderr.strip()}"
        super().__init__(message)


class DumpPermissionDenied(JbusyError):
    """The caller may not dump a process owned by another user."""

    def __init__(self, pid: int, owner: str, caller: str) -> None:
        self.pid = pid
        self.owner = owner
        self.caller = caller
        super().__init__(f"java process({pid}) is owned by user({owner}), not by the current user({caller})")


class DumpFailure(JbusyError):
    """The dump tool could not produce a thread dump."""

    def __init__(self, pid: int, reason: str) -> None:
        self.pid = pid
        self.reason = reason
        super().__init__(f"failed to dump java process({pid}): {reason}")
