"""Manual-pause detection from the worker's runtime log.

Both the worker session and the supervisor append a line

    [WATCHDOG_EXIT_CODE] <code>

to the runtime log when they exit. If the newest such line carries the
operator-interrupt code (130, Ctrl-C) the supervisor pauses: no liveness
checks, no restarts. It resumes only when an error signature shows up in log
content written after the pause began. Matching free-form log text is a
heuristic; the signatures are configuration.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Iterator

from swarm_watchdog.models import PauseState, SupervisorMemory

logger = logging.getLogger(__name__)

EXIT_MARKER = "[WATCHDOG_EXIT_CODE]"
_EXIT_CODE_RE = re.compile(r"\[WATCHDOG_EXIT_CODE\]\s*(-?\d+)")
READ_CHUNK = 1 << 20


def resume_offset(path: str | Path, offset: int) -> int:
    """Where to continue reading path from.

    A file shorter than offset was rotated or truncated and is read from the
    start. A missing file resumes at 0.
    """
    path = Path(path)
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return 0
    if size < offset:
        logger.info(f"{path} shrank ({size} < {offset} bytes), rescanning from start")
        return 0
    return offset


def read_complete_lines(
    path: str | Path, offset: int, chunk_size: int = READ_CHUNK
) -> Iterator[tuple[str, int]]:
    """Yield (text, end offset) blocks of whole lines written after offset.

    The file is read chunk_size bytes at a time and every block ends on a line
    break (\\n or \\r). A trailing partial line is never yielded, so the last
    end offset stops in front of it and the next call picks it up whole.
    """
    try:
        f = open(path, "rb")
    except FileNotFoundError:
        return
    with f:
        f.seek(offset)
        pending = b""
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                return
            pending += chunk
            cut = max(pending.rfind(b"\n"), pending.rfind(b"\r")) + 1
            if cut == 0:
                continue
            offset += cut
            yield pending[:cut].decode("utf-8", errors="replace"), offset
            pending = pending[cut:]


def last_exit_code(text: str) -> int | None:
    codes = _EXIT_CODE_RE.findall(text)
    return int(codes[-1]) if codes else None


def find_error_signature(text: str, signatures: Iterable[str]) -> str | None:
    for signature in signatures:
        if signature and signature in text:
            return signature
    return None


def append_exit_marker(path: str | Path, code: int) -> None:
    """Record why the supervisor stopped. Must not raise on the exit path."""
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"{EXIT_MARKER} {code}\n")
    except OSError as e:
        logger.error(f"Could not write exit marker to {path}: {e}")


class PauseMonitor:
    """ACTIVE/PAUSED state machine driven by new runtime log content.

    The pause flag and the log watermark live in SupervisorMemory; observe()
    returns an updated copy instead of keeping state here.
    """

    def __init__(
        self,
        runtime_log: str | Path,
        interrupt_exit_code: int = 130,
        error_signatures: Iterable[str] = (),
    ):
        self.runtime_log = Path(runtime_log)
        self.interrupt_exit_code = interrupt_exit_code
        self.error_signatures = tuple(error_signatures)

    def observe(self, memory: SupervisorMemory) -> tuple[PauseState, SupervisorMemory]:
        current = PauseState.PAUSED if memory.paused_by_operator else PauseState.ACTIVE
        code = None
        signature = None
        try:
            offset = resume_offset(self.runtime_log, memory.last_log_offset)
            for text, offset in read_complete_lines(self.runtime_log, offset):
                if current is PauseState.ACTIVE:
                    found = last_exit_code(text)
                    if found is not None:
                        code = found
                elif signature is None:
                    signature = find_error_signature(text, self.error_signatures)
        except OSError as e:
            logger.warning(f"Cannot read runtime log {self.runtime_log}: {e}")
            return current, memory

        if current is PauseState.ACTIVE:
            if code is not None and code == self.interrupt_exit_code:
                logger.warning(
                    f"Last exit code {code} means operator interrupt; pausing "
                    f"until an error appears after byte {offset}"
                )
                return PauseState.PAUSED, replace(memory, paused_by_operator=True, last_log_offset=offset)
            return PauseState.ACTIVE, replace(memory, last_log_offset=offset)

        if signature is not None:
            logger.warning(f"Error signature {signature!r} found in runtime log; resuming supervision")
            return PauseState.ACTIVE, replace(memory, paused_by_operator=False, last_log_offset=offset)
        return PauseState.PAUSED, replace(memory, last_log_offset=offset)
