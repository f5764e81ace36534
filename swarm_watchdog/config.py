"""Supervisor configuration.

Precedence (lowest to highest): dataclass defaults, YAML file, environment
variables (SWARM_WATCHDOG_<FIELD>), explicit overrides from the CLI.
A config is immutable once loaded; validate() is called before the supervisor
starts and any problem is fatal.

Example YAML (see config/watchdog.example.yaml):

    node_name: gensyn
    node_dir: /root/rl-swarm
    status_url: https://dashboard.example.org/api/v1/status
    health_interval: 300
    min_resource_threshold: 1000
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from swarm_watchdog.errors import ConfigurationError
from swarm_watchdog.models import WorkerIdentity

logger = logging.getLogger(__name__)

ENV_PREFIX = "SWARM_WATCHDOG_"

HEALTH_SIGNALS = ("gpu_memory", "cpu_percent")
SESSION_BACKENDS = ("screen", "tmux")

DEFAULT_WORKER_COMMAND = (
    "python -m code_gen_exp.runner.swarm_launcher"
    ' --config-path "{node_dir}/code_gen_exp/config"'
    " --config-name code-gen-swarm.yaml"
)

DEFAULT_ERROR_SIGNATURES = (
    "Traceback",
    "Error",
    "OutOfMemory",
    "CUDA out of memory",
    "Killed process",
)


@dataclass(frozen=True)
class WatchdogConfig:
    """Everything one supervisor instance needs to know about its node."""
    # Node identity
    node_name: str = "gensyn"  # also the terminal session name
    node_dir: str = "/root/rl-swarm"
    venv_activate: str = ""  # default: <node_dir>/.venv/bin/activate
    runtime_log: str = ""  # default: <node_dir>/runtime.log
    watchdog_log: str = "/root/gensyn_watchdog.log"
    ledger_path: str = ""  # default: <node_dir>/logs/bets.log

    # Launch
    worker_command: str = DEFAULT_WORKER_COMMAND
    command_signature: str = "code_gen_exp.runner.swarm_launcher"
    launcher_signature: str = "run_rl_swarm.sh"
    # Answers to "change settings?" and "model name (Enter for default)"
    auto_answers: tuple[str, ...] = ("N", "")
    betting_answers: dict[str, str] = field(
        default_factory=lambda: {"enable": "Y", "disable": "N"}
    )
    session_backend: str = "screen"

    # Status endpoint (empty disables game-change checks)
    status_url: str = ""
    status_timeout: float = 10.0

    # Timings (seconds)
    health_interval: float = 300.0
    game_check_interval: float = 900.0
    betting_check_interval: float = 600.0
    grace_period: float = 60.0
    settle_delay: float = 2.0

    # Health thresholds
    health_signal: str = "gpu_memory"
    min_resource_threshold: float = 0.0  # 0 disables the resource check
    min_free_vram_mb: int = 0  # 0 disables the pre-restart VRAM gate

    # Runtime log scanning
    interrupt_exit_code: int = 130
    error_signatures: tuple[str, ...] = DEFAULT_ERROR_SIGNATURES
    bet_marker: str = "placed bet"

    lock_dir: str = "/tmp"

    def __post_init__(self) -> None:
        node_dir = str(self.node_dir)
        if not self.venv_activate:
            object.__setattr__(self, "venv_activate", os.path.join(node_dir, ".venv", "bin", "activate"))
        if not self.runtime_log:
            object.__setattr__(self, "runtime_log", os.path.join(node_dir, "runtime.log"))
        if not self.ledger_path:
            object.__setattr__(self, "ledger_path", os.path.join(node_dir, "logs", "bets.log"))
        object.__setattr__(self, "auto_answers", tuple(str(a) for a in self.auto_answers))
        object.__setattr__(self, "error_signatures", tuple(str(s) for s in self.error_signatures))

    @property
    def resolved_worker_command(self) -> str:
        return self.worker_command.replace("{node_dir}", str(self.node_dir))

    @property
    def status_checks_enabled(self) -> bool:
        return bool(self.status_url.strip())

    @property
    def lock_path(self) -> Path:
        return Path(self.lock_dir) / f"swarm_watchdog_{self.node_name}.lock"

    def identity(self) -> WorkerIdentity:
        return WorkerIdentity(
            session_name=self.node_name,
            node_dir=str(self.node_dir),
            command_signature=self.command_signature,
            launcher_signature=self.launcher_signature,
        )

    def answer_for(self, param: str) -> str:
        """Map a restart param (enable/disable) to the text typed at the prompt."""
        try:
            return self.betting_answers[param]
        except KeyError:
            raise ConfigurationError(
                f"No betting answer configured for {param!r}", field="betting_answers"
            ) from None

    def validate(self, check_paths: bool = True) -> None:
        """Raise ConfigurationError if this config cannot run a supervisor."""
        for name in ("node_name", "node_dir", "worker_command", "command_signature", "runtime_log"):
            if not str(getattr(self, name)).strip():
                raise ConfigurationError(f"{name} must not be empty", field=name)

        for name in ("health_interval", "game_check_interval", "betting_check_interval", "status_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be > 0", field=name)

        for name in ("grace_period", "settle_delay", "min_resource_threshold", "min_free_vram_mb"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0", field=name)

        if self.health_signal not in HEALTH_SIGNALS:
            raise ConfigurationError(
                f"health_signal must be one of {HEALTH_SIGNALS}, got {self.health_signal!r}",
                field="health_signal",
            )
        if self.session_backend not in SESSION_BACKENDS:
            raise ConfigurationError(
                f"session_backend must be one of {SESSION_BACKENDS}, got {self.session_backend!r}",
                field="session_backend",
            )
        for param in ("enable", "disable"):
            self.answer_for(param)

        if check_paths and not Path(self.node_dir).is_dir():
            raise ConfigurationError(
                f"Node directory does not exist: {self.node_dir}", field="node_dir"
            )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = list(value) if isinstance(value, tuple) else value
        return out


_FIELD_DEFAULTS: dict[str, Any] = {
    f.name: getattr(WatchdogConfig(), f.name) for f in fields(WatchdogConfig)
}


def _coerce(name: str, raw: Any) -> Any:
    """Convert a YAML/env value to the type of the field's default."""
    default = _FIELD_DEFAULTS[name]
    if isinstance(default, bool):
        if isinstance(raw, str):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        return bool(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, tuple):
        if isinstance(raw, str):
            return tuple(part.strip() for part in raw.split(","))
        if not isinstance(raw, (list, tuple)):
            raise ValueError(f"expected a list, got {type(raw).__name__}")
        return tuple(str(item) for item in raw)
    if isinstance(default, dict):
        if isinstance(raw, str):
            pairs = [p.split("=", 1) for p in raw.split(",") if p.strip()]
            if any(len(p) != 2 for p in pairs):
                raise ValueError("expected key=value pairs")
            return {k.strip(): v.strip() for k, v in pairs}
        if not isinstance(raw, Mapping):
            raise ValueError(f"expected a mapping, got {type(raw).__name__}")
        return {str(k): str(v) for k, v in raw.items()}
    if raw is None:
        return ""
    return str(raw)


def _load_yaml(path: str | Path) -> dict[str, Any]:
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", field="config")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", field="config") from e
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Config file {path} must contain a mapping", field="config")

    values: dict[str, Any] = {}
    for key, raw in data.items():
        if key not in _FIELD_DEFAULTS:
            raise ConfigurationError(f"Unknown config key {key!r} in {path}", field=str(key))
        try:
            values[key] = _coerce(key, raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Bad value for {key}: {e}", field=str(key)) from e
    return values


def _load_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in _FIELD_DEFAULTS:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        try:
            values[name] = _coerce(name, raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring invalid {ENV_PREFIX}{name.upper()}={raw!r}: {e}")
    return values


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
) -> WatchdogConfig:
    """Build a WatchdogConfig from file, environment and overrides.

    Does not validate; call config.validate() before starting a supervisor.
    """
    values: dict[str, Any] = {}
    if path:
        values.update(_load_yaml(path))
    values.update(_load_env(os.environ if env is None else env))
    for key, raw in (overrides or {}).items():
        if raw is None:
            continue
        if key not in _FIELD_DEFAULTS:
            raise ConfigurationError(f"Unknown config override {key!r}", field=key)
        try:
            values[key] = _coerce(key, raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Bad value for {key}: {e}", field=key) from e

    # Derived paths follow node_dir unless set explicitly
    return WatchdogConfig(**values)
