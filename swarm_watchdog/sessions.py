"""Detached terminal sessions that host the worker.

The worker runs out-of-band from the supervisor's process tree inside a named
screen (default) or tmux session, so an operator can attach to it and the
supervisor can die without taking the worker down.
"""

from __future__ import annotations

import logging
import re
import subprocess
from typing import Sequence

from swarm_watchdog.errors import LaunchError

logger = logging.getLogger(__name__)

SESSION_TOOL_TIMEOUT = 15


class SessionManager:
    """create_detached / terminate / list_sessions over some multiplexer."""

    binary = ""

    def __init__(self, timeout: float = SESSION_TOOL_TIMEOUT):
        self.timeout = timeout

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.binary, *args],
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def list_sessions(self) -> list[str]:
        raise NotImplementedError

    def terminate(self, name: str) -> bool:
        """Close the session. Returns False if it did not exist; never raises for that."""
        raise NotImplementedError

    def create_detached(self, name: str, command: Sequence[str]) -> None:
        """Start command in a new detached session. Raises LaunchError on failure."""
        raise NotImplementedError

    def _launch(self, name: str, args: Sequence[str]) -> None:
        try:
            result = self._run(args)
        except FileNotFoundError as e:
            raise LaunchError(f"{self.binary} is not installed", session=name) from e
        except (subprocess.TimeoutExpired, OSError) as e:
            raise LaunchError(f"{self.binary} failed to start session: {e}", session=name) from e
        if result.returncode != 0:
            raise LaunchError(
                f"{self.binary} failed to start session: {(result.stderr or result.stdout).strip()}",
                session=name,
                exit_code=result.returncode,
            )


_SCREEN_LINE_RE = re.compile(r"^\s*(\d+)\.(\S+)\s")


class ScreenSessionManager(SessionManager):
    binary = "screen"

    def _session_ids(self) -> list[tuple[str, str]]:
        """(pid.name, name) for every session; `screen -ls` exit status is not meaningful."""
        try:
            result = self._run(["-ls"])
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"screen -ls failed: {e}")
            return []
        ids = []
        for line in (result.stdout or "").splitlines():
            m = _SCREEN_LINE_RE.match(line)
            if m:
                ids.append((f"{m.group(1)}.{m.group(2)}", m.group(2)))
        return ids

    def list_sessions(self) -> list[str]:
        return [name for _, name in self._session_ids()]

    def terminate(self, name: str) -> bool:
        # Several sessions may share a name; quit each by pid.name
        targets = [sid for sid, sname in self._session_ids() if sname == name]
        for sid in targets:
            try:
                result = self._run(["-S", sid, "-X", "quit"])
            except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
                logger.warning(f"Failed to quit screen session {sid}: {e}")
                continue
            if result.returncode != 0:
                logger.warning(
                    f"screen quit {sid} exited {result.returncode}: "
                    f"{(result.stderr or result.stdout).strip()}"
                )
        return bool(targets)

    def create_detached(self, name: str, command: Sequence[str]) -> None:
        self._launch(name, ["-dmS", name, *command])


class TmuxSessionManager(SessionManager):
    binary = "tmux"

    def list_sessions(self) -> list[str]:
        try:
            result = self._run(["list-sessions", "-F", "#{session_name}"])
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"tmux list-sessions failed: {e}")
            return []
        if result.returncode != 0:
            # No server running means no sessions
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def terminate(self, name: str) -> bool:
        try:
            result = self._run(["kill-session", "-t", f"={name}"])
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"Failed to kill tmux session {name}: {e}")
            return False
        return result.returncode == 0

    def create_detached(self, name: str, command: Sequence[str]) -> None:
        self._launch(name, ["new-session", "-d", "-s", name, *command])


def make_session_manager(backend: str) -> SessionManager:
    if backend == "tmux":
        return TmuxSessionManager()
    return ScreenSessionManager()
