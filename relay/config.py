from __future__ import annotations
from dataclasses import dataclass
import os


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Config:
    artifacts_dir: str = "artifacts"
    exec_secret: str = ""
    exec_url: str = ""
    default_tz: str = "UTC"
    result_dismiss_s: float = 5.0
    call_timeout_s: float = 15.0
    max_rounds: int = 2
    max_alternatives: int = 3
    slot_step_min: int = 30
    lookahead_days: int = 7
    working_start_hour: int = 9
    working_end_hour: int = 18
    token_ttl_s: int = 3600
    log_level: str = "INFO"
    log_json: bool = False
    gcal_sync: bool = False
    gcal_calendar_id: str = "primary"
    google_client_secret: str = "secrets/client_secret.json"
    gcal_write_token: str = "secrets/tokens/gcal_write_token.json"

    @property
    def exec_secret_bytes(self) -> bytes:
        return self.exec_secret.encode("utf-8") if self.exec_secret else b""


def load_config() -> Config:
    return Config(
        artifacts_dir=os.getenv("RELAY_ARTIFACTS_DIR", "artifacts"),
        exec_secret=os.getenv("RELAY_EXEC_SECRET", ""),
        exec_url=(os.getenv("RELAY_EXEC_URL") or "").strip(),
        default_tz=(os.getenv("RELAY_DEFAULT_TZ") or "UTC").strip(),
        result_dismiss_s=_get_float("RELAY_RESULT_DISMISS_S", 5.0),
        call_timeout_s=_get_float("RELAY_CALL_TIMEOUT_S", 15.0),
        max_rounds=_get_int("RELAY_MAX_ROUNDS", 2),
        max_alternatives=_get_int("RELAY_MAX_ALTERNATIVES", 3),
        slot_step_min=_get_int("RELAY_SLOT_STEP_MIN", 30),
        lookahead_days=_get_int("RELAY_LOOKAHEAD_DAYS", 7),
        working_start_hour=_get_int("RELAY_WORKING_START_HOUR", 9),
        working_end_hour=_get_int("RELAY_WORKING_END_HOUR", 18),
        token_ttl_s=_get_int("RELAY_TOKEN_TTL_S", 3600),
        log_level=(os.getenv("RELAY_LOG_LEVEL") or "INFO").strip().upper(),
        log_json=_get_bool("RELAY_LOG_JSON", False),
        gcal_sync=_get_bool("RELAY_GCAL_SYNC", False),
        gcal_calendar_id=os.getenv("RELAY_GCAL_CALENDAR_ID", "primary"),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", "secrets/client_secret.json"),
        gcal_write_token=os.getenv("GCAL_WRITE_TOKEN", "secrets/tokens/gcal_write_token.json"),
    )
