from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_INFLUX_HOST_ENV = "INFLUX_HOST"
_INFLUX_TOKEN_ENV = "INFLUX_TOKEN"
_INFLUX_DATABASE_ENV = "INFLUX_DATABASE"
_INFLUX_ORG_ENV = "INFLUX_ORG"
_SINK_BACKEND_ENV = "WX_SINK_BACKEND"
_MIRROR_ENV = "WX_MIRROR_TO_FILE"
_STORE_PATH_ENV = "WXDB_PATH"
_SPOOL_PATH_ENV = "WX_SPOOL_PATH"
_STREAM_URL_ENV = "BRIDGE_STREAM_URL"
_STREAM_ENABLED_ENV = "WX_STREAM_ENABLED"
_TIMEZONE_ENV = "WX_LOCAL_TIMEZONE"
_THRESHOLD_ENV = "WX_QUERY_THRESHOLD_SECONDS"
_IMPORT_BATCH_ENV = "WX_IMPORT_BATCH_SIZE"
_WRITE_RETRIES_ENV = "WX_WRITE_RETRIES"
_RETRY_DELAY_ENV = "WX_RETRY_BASE_DELAY"
_MAX_RECONNECTS_ENV = "WX_MAX_RECONNECTS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_SINK_BACKENDS = ("auto", "influx", "file")
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    influx_host: Optional[str]
    influx_token: Optional[str]
    influx_database: str
    influx_org: Optional[str]
    sink_backend: str
    mirror_to_file: bool
    store_path: str
    spool_path: Optional[str]
    stream_url: str
    stream_enabled: bool
    local_timezone: str
    query_threshold_seconds: float
    import_batch_size: int
    write_retries: int
    retry_base_delay: float
    max_reconnects: int
    log_level: str

    @property
    def uses_influx(self) -> bool:
        if self.sink_backend == "influx":
            return True
        if self.sink_backend == "file":
            return False
        return self.influx_host is not None


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_sink_backend(default: str) -> str:
    candidate = _read_str_env(_SINK_BACKEND_ENV, default).lower()
    return candidate if candidate in _SINK_BACKENDS else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        influx_host=_read_optional_env(_INFLUX_HOST_ENV, None),
        influx_token=_read_optional_env(_INFLUX_TOKEN_ENV, None),
        influx_database=_read_str_env(_INFLUX_DATABASE_ENV, "weather"),
        influx_org=_read_optional_env(_INFLUX_ORG_ENV, None),
        sink_backend=_read_sink_backend("auto"),
        mirror_to_file=_read_bool(_MIRROR_ENV, False),
        store_path=_read_str_env(_STORE_PATH_ENV, "./tmp/wxdb.txt"),
        spool_path=_read_optional_env(_SPOOL_PATH_ENV, "./tmp/wxdb.spool"),
        stream_url=_read_str_env(_STREAM_URL_ENV, "http://0.0.0.0:8433/stream"),
        stream_enabled=_read_bool(_STREAM_ENABLED_ENV, True),
        local_timezone=_read_str_env(_TIMEZONE_ENV, "America/Los_Angeles"),
        query_threshold_seconds=_read_positive_float(_THRESHOLD_ENV, 18.0),
        import_batch_size=_read_positive_int(_IMPORT_BATCH_ENV, 5000),
        write_retries=_read_positive_int(_WRITE_RETRIES_ENV, 3),
        retry_base_delay=_read_positive_float(_RETRY_DELAY_ENV, 0.5),
        max_reconnects=_read_positive_int(_MAX_RECONNECTS_ENV, 5),
        log_level=_read_log_level("INFO"),
    )
