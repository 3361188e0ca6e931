import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_PORT = 8081
DEFAULT_ROOM_IDLE_GRACE_SECONDS = 300.0
DEFAULT_ROOM_SWEEP_INTERVAL_SECONDS = 30.0


@dataclass(frozen=True)
class RelaySettings:
    """Resolved process configuration."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    log_file: Optional[str] = None
    room_idle_grace_seconds: float = DEFAULT_ROOM_IDLE_GRACE_SECONDS
    room_sweep_interval_seconds: float = DEFAULT_ROOM_SWEEP_INTERVAL_SECONDS
    cors_allow_origins: tuple[str, ...] = ("*",)

    @property
    def sweeper_enabled(self) -> bool:
        return self.room_sweep_interval_seconds > 0


def _parse_port(env: Mapping[str, str]) -> int:
    # WS_PORT wins over PORT (hosting platforms usually inject PORT).
    raw = env.get("WS_PORT") or env.get("PORT")
    if not raw:
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid port value: {raw!r}") from e
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range: {port}")
    return port


def _parse_seconds(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from e


def _parse_origins(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return ("*",)
    origins = tuple(o.strip() for o in raw.split(",") if o.strip())
    return origins or ("*",)


# PUBLIC_INTERFACE
def load_settings(env: Optional[Mapping[str, str]] = None) -> RelaySettings:
    """
    Load relay configuration from environment variables.

    Recognized variables:
      HOST, WS_PORT / PORT, LOG_LEVEL, LOG_FILE,
      ROOM_IDLE_GRACE_SECONDS, ROOM_SWEEP_INTERVAL_SECONDS, CORS_ALLOW_ORIGINS

    Raises:
      ValueError: if a numeric variable cannot be parsed.
    """
    if env is None:
        env = os.environ
    return RelaySettings(
        host=env.get("HOST") or "0.0.0.0",
        port=_parse_port(env),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        log_file=env.get("LOG_FILE") or None,
        room_idle_grace_seconds=_parse_seconds(env, "ROOM_IDLE_GRACE_SECONDS", DEFAULT_ROOM_IDLE_GRACE_SECONDS),
        room_sweep_interval_seconds=_parse_seconds(
            env, "ROOM_SWEEP_INTERVAL_SECONDS", DEFAULT_ROOM_SWEEP_INTERVAL_SECONDS
        ),
        cors_allow_origins=_parse_origins(env.get("CORS_ALLOW_ORIGINS")),
    )
