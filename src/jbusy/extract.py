"""Cutting a single thread's stack out of a jstack dump."""

import re
from collections.abc import Callable

from jbusy.models import DumpMode, StackBlock, ThreadSample

MIXED_FRAMES_DELIMITER = re.compile(r"^-{15,}(?: \d+ -{15,})?\s*$")


def _collect(lines: list[str], start: int, is_end: Callable[[str], bool]) -> StackBlock:
    """Take lines from start up to, not including, the first end line."""
    block = [lines[start]]
    for line in lines[start + 1 :]:
        if is_end(line):
            break
        block.append(line)
    while len(block) > 1 and not block[-1].strip():
        block.pop()
    return StackBlock("\n".join(block))


def _find_block(
    text: str,
    is_start: Callable[[str], bool],
    is_end: Callable[[str], bool],
) -> StackBlock | None:
    lines = text.splitlines()
    for index, line in enumerate(lines):
        if is_start(line):
            return _collect(lines, index, is_end)
    return None


def _is_blank(line: str) -> bool:
    return not line.strip()


def mixed_frames_block(text: str, tid: int) -> StackBlock | None:
    """Find the block of ``jstack -m`` output headed ``----- <tid> -----``."""
    start = re.compile(rf"^-{{15,}} {tid} -{{15,}}\s*$")
    return _find_block(text, start.match, MIXED_FRAMES_DELIMITER.match)


def forced_block(text: str, tid: int) -> StackBlock | None:
    """Find the block of ``jstack -F`` output headed ``Thread <tid>:``."""
    start = re.compile(rf"^Thread {tid}:")
    return _find_block(text, start.match, _is_blank)


def nid_block(text: str, tid: int) -> StackBlock | None:
    """
    Find the block of plain jstack output whose header carries ``nid=<id> ``.

    JDK 19 and later print the nid in decimal, older releases in hex.
    """
    start = re.compile(rf"\bnid=(?:{hex(tid)}|{tid}) ")
    return _find_block(text, start.search, _is_blank)


def extract_stack(text: str, sample: ThreadSample, mode: DumpMode) -> StackBlock | None:
    """
    Cut the stack of one thread out of a dump.

    Only the first matching block is returned. The block starts at its
    header line and stops before the blank or delimiter line ending it.

    Args:
        text: Output of jstack.
        sample: The thread to look for.
        mode: Layout of the dump, matching the jstack flags used.

    Returns:
        The thread's block, or None when the dump has no such thread.
    """
    if mode is DumpMode.MIXED_FRAMES:
        return mixed_frames_block(text, sample.tid)
    if mode is DumpMode.FORCED:
        return forced_block(text, sample.tid)
    return nid_block(text, sample.tid)
