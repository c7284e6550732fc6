"""Runtime configuration for a sensor session."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

ENV_PREFIX = "THERMOLINK_"
DEFAULT_SCAN_DURATION = 3.0


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
	raw = env.get(ENV_PREFIX + key)
	if raw is None or raw == "":
		return default
	try:
		return float(raw)
	except ValueError as exc:
		raise ValueError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}") from exc


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
	raw = env.get(ENV_PREFIX + key)
	if raw is None or raw == "":
		return default
	try:
		return int(raw)
	except ValueError as exc:
		raise ValueError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}") from exc


@dataclass(slots=True)
class MachineConfig:
	"""Configuration bundle used by :class:`~thermolink.state_machine.ConnectionStateMachine`."""

	scan_duration: float = DEFAULT_SCAN_DURATION
	connect_timeout: float = 10.0
	connect_attempts: int = 1
	base_backoff: float = 0.5
	max_backoff: float = 4.0
	adapter: Optional[str] = None
	journal_path: Optional[Path] = None

	def __post_init__(self) -> None:
		if self.scan_duration <= 0:
			raise ValueError("scan_duration must be positive")
		if self.connect_timeout <= 0:
			raise ValueError("connect_timeout must be positive")
		if self.connect_attempts < 1:
			raise ValueError("connect_attempts must be at least 1")
		if self.base_backoff < 0:
			raise ValueError("base_backoff must not be negative")
		self.max_backoff = max(self.base_backoff, self.max_backoff)
		if self.journal_path is not None:
			self.journal_path = Path(self.journal_path)

	@classmethod
	def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "MachineConfig":
		env = os.environ if env is None else env
		journal = env.get(ENV_PREFIX + "JOURNAL") or None
		return cls(
			scan_duration=_env_float(env, "SCAN_DURATION", DEFAULT_SCAN_DURATION),
			connect_timeout=_env_float(env, "CONNECT_TIMEOUT", 10.0),
			connect_attempts=_env_int(env, "CONNECT_ATTEMPTS", 1),
			base_backoff=_env_float(env, "BASE_BACKOFF", 0.5),
			max_backoff=_env_float(env, "MAX_BACKOFF", 4.0),
			adapter=env.get(ENV_PREFIX + "ADAPTER") or None,
			journal_path=Path(journal) if journal else None,
		)


__all__ = ["MachineConfig", "DEFAULT_SCAN_DURATION", "ENV_PREFIX"]
