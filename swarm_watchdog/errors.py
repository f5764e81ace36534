"""
Swarm Watchdog Error Hierarchy

Exception hierarchy shared by the supervisor components.
All custom exceptions inherit from WatchdogError for easy catching and filtering.

Usage:
    from swarm_watchdog.errors import LaunchError, RestartError

    try:
        orchestrator.restart(identity, param)
    except RestartError as e:
        logger.error(f"Restart failed: {e.message}, session: {e.context.get('session')}")
"""

from typing import Any

__all__ = [
    # Configuration errors
    "ConfigurationError",
    "LaunchError",
    "LockError",
    # Probe errors
    "ProbeError",
    # Restart errors
    "RestartError",
    "SessionError",
    "StatusUnavailableError",
    # Base error
    "WatchdogError",
]


class WatchdogError(Exception):
    """Base exception for all watchdog errors.

    Attributes:
        code: Machine-readable error code for categorization
        message: Human-readable error description
        context: Additional context for debugging
    """
    code: str = "WATCHDOG_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.code}] {self.message} ({ctx})"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(WatchdogError):
    """Invalid supervisor configuration.

    Fatal: the supervisor refuses to start when this is raised.

    Attributes:
        field: Name of the offending configuration field
    """
    code: str = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.field = field
        if field:
            self.context["field"] = field


class LockError(WatchdogError):
    """Another supervisor already holds the per-node lock."""
    code: str = "LOCK_HELD"


# =============================================================================
# External Query Errors
# =============================================================================


class ProbeError(WatchdogError):
    """A monitoring tool (nvidia-smi, process table) could not be queried.

    Probes catch this internally and fall back to the permissive answer.
    """
    code: str = "PROBE_ERROR"


class StatusUnavailableError(WatchdogError):
    """Status endpoint unreachable or returned malformed data.

    Never escapes StatusOracle.fetch_status(); it is degraded to an
    UNKNOWN snapshot.
    """
    code: str = "STATUS_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        url: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        if url:
            self.context["url"] = url


# =============================================================================
# Restart Errors
# =============================================================================


class RestartError(WatchdogError):
    """Base class for restart orchestration failures.

    Operational: the loop logs it and keeps ticking.
    """
    code: str = "RESTART_ERROR"


class SessionError(RestartError):
    """Terminal session manager command failed.

    Attributes:
        session: Name of the session being managed
        exit_code: Exit code of the session tool, if it ran
    """
    code: str = "SESSION_ERROR"

    def __init__(
        self,
        message: str,
        session: str | None = None,
        exit_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        if session:
            self.context["session"] = session
        if exit_code is not None:
            self.context["exit_code"] = exit_code


class LaunchError(SessionError):
    """The fresh worker session could not be started."""
    code: str = "LAUNCH_ERROR"
