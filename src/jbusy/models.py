"""Data models for jbusy."""

from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True, frozen=True)
class ThreadSample:
    """Immutable CPU sample of a single Java thread."""

    pid: int
    tid: int  # lwp, as listed by ps and top
    cpu_percent: float  # 0.0 - 100.0 per core
    user: str  # owner of the java process

    @property
    def hex_tid(self) -> str:
        """Thread id in the form jstack prints after ``nid=``."""
        return hex(self.tid)


class DumpMode(Enum):
    """Layout of the jstack output, which decides how a thread block is found."""

    MIXED_FRAMES = "mixed"
    FORCED = "forced"
    DEFAULT = "default"

    @classmethod
    def from_flags(cls, mix_native_frames: bool, force: bool) -> "DumpMode":
        """Pick the mode matching the jstack flags in use."""
        if mix_native_frames:
            return cls.MIXED_FRAMES
        if force:
            return cls.FORCED
        return cls.DEFAULT


@dataclass(slots=True, frozen=True)
class StackBlock:
    """The stack text of one thread, cut out of a dump."""

    text: str

    @property
    def lines(self) -> list[str]:
        """The block split into lines."""
        return self.text.splitlines()
