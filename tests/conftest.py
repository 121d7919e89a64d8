"""Shared fixtures: canned command output and a fake command runner."""

import io
from pathlib import Path

import psutil
import pytest
from rich.console import Console

from jbusy.errors import CommandError

PS_OUTPUT = """\
  100     100  0.0 alice
  100       5 50.0 alice
  100       6 30.0 alice
  100       7  2.5 alice
  200     201 10.0 bob
"""

TOP_OUTPUT = """\
top - 10:00:00 up 1 day,  2:03,  1 user,  load average: 1.00, 0.50, 0.25
Threads:  40 total,   2 running,  38 sleeping,   0 stopped,   0 zombie
%Cpu(s): 50.0 us,  1.0 sy,  0.0 ni, 49.0 id,  0.0 wa,  0.0 hi,  0.0 si,  0.0 st
MiB Mem :  15921.0 total,   8000.0 free,   4000.0 used,   3921.0 buff/cache
MiB Swap:   2048.0 total,   2048.0 free,      0.0 used.  11000.0 avail Mem

    PID USER      PR  NI    VIRT    RES    SHR S  %CPU  %MEM     TIME+ COMMAND
      5 alice     20   0 5000000 200000  20000 R  99.0   1.2   1:00.00 java
      6 alice     20   0 5000000 200000  20000 S   0.0   1.2   0:00.50 worker-1

top - 10:00:01 up 1 day,  2:03,  1 user,  load average: 1.00, 0.50, 0.25
Threads:  40 total,   2 running,  38 sleeping,   0 stopped,   0 zombie
%Cpu(s): 50.0 us,  1.0 sy,  0.0 ni, 49.0 id,  0.0 wa,  0.0 hi,  0.0 si,  0.0 st
MiB Mem :  15921.0 total,   8000.0 free,   4000.0 used,   3921.0 buff/cache
MiB Swap:   2048.0 total,   2048.0 free,      0.0 used.  11000.0 avail Mem

    PID USER      PR  NI    VIRT    RES    SHR S  %CPU  %MEM     TIME+ COMMAND
    999 carol     20   0 1000000  10000   1000 R  80.0   0.1   0:10.00 python3
      6 alice     20   0 5000000 200000  20000 R  40.0   1.2   0:00.90 worker-1
      5 alice     20   0 5000000 200000  20000 S  12.5   1.2   1:00.12 java
      7 alice     20   0 5000000 200000  20000 S   0.0   1.2   0:00.01 GC Thread#0
"""

JSTACK_OUTPUT = """\
2026-10-17 10:00:00
Full thread dump OpenJDK 64-Bit Server VM (17.0.8+7 mixed mode, sharing):

"main" #1 prio=5 os_prio=0 cpu=120.52ms elapsed=10.11s tid=0x00007f4c28016800 nid=0x5 runnable  [0x00007f4c2fffe000]
   java.lang.Thread.State: RUNNABLE
\tat com.example.Busy.spin(Busy.java:12)
\tat com.example.Busy.main(Busy.java:5)

"worker-1" #12 prio=5 os_prio=0 cpu=98.00ms elapsed=9.90s tid=0x00007f4c2819c000 nid=0x6 waiting on condition  [0x00007f4c0a1fe000]
   java.lang.Thread.State: TIMED_WAITING (sleeping)
\tat java.lang.Thread.sleep(java.base@17.0.8/Native Method)
\tat com.example.Worker.run(Worker.java:20)

"VM Thread" os_prio=0 cpu=1.20ms elapsed=10.10s tid=0x00007f4c28123000 nid=0x10 runnable

JNI global refs: 6, weak refs: 0
"""

FORCED_JSTACK_OUTPUT = """\
Attaching to process ID 100, please wait...
Debugger attached successfully.
Server compiler detected.
JVM version is 25.292-b10
Deadlock Detection:

No deadlocks found.

Thread 50: (state = BLOCKED)
 - java.lang.Object.wait(long) @bci=0 (Interpreted frame)

Thread 5: (state = IN_JAVA)
 - com.example.Busy.spin() @bci=4, line=12 (Compiled frame; information may be imprecise)
 - com.example.Busy.main(java.lang.String[]) @bci=1, line=5 (Interpreted frame)

Thread 6: (state = BLOCKED)
 - java.lang.Thread.sleep(long) @bci=0 (Interpreted frame)
"""

MIXED_JSTACK_OUTPUT = """\
Attaching to process ID 100, please wait...
Debugger attached successfully.
Server compiler detected.
JVM version is 25.292-b10
Deadlock Detection:

No deadlocks found.

----------------- 5 -----------------
0x00007f4c3a1b2c3d\tcom.example.Busy.spin() + 0x24
0x00007f4c3a1b2000\tcom.example.Busy.main(java.lang.String[]) + 0x10
----------------- 6 -----------------
0x00007f4c3f0e6d8a\t__pthread_cond_timedwait + 0x11a
"""


class FakeRunner:
    """Stands in for CommandRunner, answering from canned output per program."""

    def __init__(self, outputs: dict | None = None) -> None:
        self.outputs = dict(outputs or {})
        self.calls: list[list[str]] = []
        self.envs: list[dict | None] = []
        self.output_paths: list[Path] = []

    @staticmethod
    def program(args: list[str]) -> str:
        if args[0] == "sudo":
            return Path(args[3]).name
        return Path(args[0]).name

    def run(self, args, *, env=None, output_path=None) -> str:
        args = [str(arg) for arg in args]
        self.calls.append(args)
        self.envs.append(env)
        result = self.outputs[self.program(args)]
        if callable(result):
            result = result(args)
        if isinstance(result, Exception):
            raise result
        if output_path is not None:
            self.output_paths.append(output_path)
            output_path.write_text(result)
        return result

    def calls_to(self, program: str) -> list[list[str]]:
        return [args for args in self.calls if self.program(args) == program]


@pytest.fixture
def runner() -> FakeRunner:
    """A runner answering ps, top and jstack with canned output."""
    return FakeRunner({"ps": PS_OUTPUT, "top": TOP_OUTPUT, "jstack": JSTACK_OUTPUT})


@pytest.fixture
def alive(monkeypatch):
    """Pretend every pid is a running process."""
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: True)


@pytest.fixture
def java_pid(monkeypatch):
    """Pretend every pid filter names a java process."""
    monkeypatch.setattr("jbusy.sampler.is_java_process", lambda pid: True)


@pytest.fixture
def console() -> Console:
    """A colorless console writing to memory."""
    return Console(file=io.StringIO(), highlight=False, soft_wrap=True, no_color=True)


def jstack_failure(pid: int = 100) -> CommandError:
    return CommandError(["jstack", str(pid)], 1, stdout=f"{pid}: Unable to open socket file\n")
