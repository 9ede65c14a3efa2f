"""Load ``config.json`` plus environment overrides into a :class:`BotConfig`."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"


def safe_load_json(path: str, default_value: Any) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.info("⚠️ %s not found. Using defaults.", path)
    except Exception as e:
        logger.warning("⚠️ Could not load %s: %s", path, e)
    return default_value


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_id_list(value: Any) -> List[int]:
    if not isinstance(value, (list, tuple)):
        return []
    ids = []
    for item in value:
        try:
            ids.append(int(item))
        except (TypeError, ValueError):
            logger.warning("⚠️ Ignoring invalid channel id %r", item)
    return ids


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


@dataclass
class ParkingConfig:
    api_url: str = "https://api.mobile-parking.eu/v10/permit/Tablet/confirm"
    area_id: int = 1956
    area_key: str = "ADK-4688"
    client_uid: str = "12cdf204-d969-469a-9bd5-c1f1fc59ee34"
    country_code: str = "45"
    vehicle_country: str = "DK"
    duration_minutes: int = 600
    request_timeout: float = 15.0
    rate_limit_per_hour: int = 3
    encrypt_profiles: bool = True


@dataclass
class ScheduleConfig:
    timezone: str = "Europe/Copenhagen"
    poll_interval_seconds: float = 60.0
    tolerance_seconds: int = 30
    validity_hours: float = 10.0
    expiry_warning_seconds: int = 60
    weekdays_only: bool = True


@dataclass
class BotConfig:
    discord_token: Optional[str] = None
    api_base_url: str = "https://discord.com/api/v10"
    data_dir: str = "data"
    server_host: str = "127.0.0.1"
    server_port: int = 5000
    debug: bool = False
    dry_run: bool = False
    log_file: Optional[str] = None
    reminder_poll_seconds: float = 60.0
    command_channels: List[int] = field(default_factory=list)
    command_poll_seconds: float = 2.0
    command_prefixes: List[str] = field(default_factory=lambda: ["/", "-"])
    session_idle_timeout_hours: Optional[float] = None
    parking: ParkingConfig = field(default_factory=ParkingConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    @property
    def parking_data_path(self) -> str:
        return os.path.join(self.data_dir, "parking_data.json")

    @property
    def parking_key_path(self) -> str:
        return os.path.join(self.data_dir, "parking_key")

    @property
    def reminders_path(self) -> str:
        return os.path.join(self.data_dir, "reminders.json")


def _parking_from(raw: Dict[str, Any]) -> ParkingConfig:
    base = ParkingConfig()
    return ParkingConfig(
        api_url=str(raw.get("api_url") or base.api_url),
        area_id=_as_int(raw.get("area_id"), base.area_id),
        area_key=str(raw.get("area_key") or base.area_key),
        client_uid=str(raw.get("client_uid") or base.client_uid),
        country_code=str(raw.get("country_code") or base.country_code),
        vehicle_country=str(raw.get("vehicle_country") or base.vehicle_country),
        duration_minutes=_as_int(raw.get("duration_minutes"), base.duration_minutes),
        request_timeout=_as_float(raw.get("request_timeout"), base.request_timeout),
        rate_limit_per_hour=max(1, _as_int(raw.get("rate_limit_per_hour"), base.rate_limit_per_hour)),
        encrypt_profiles=_as_bool(raw.get("encrypt_profiles"), base.encrypt_profiles),
    )


def _schedule_from(raw: Dict[str, Any]) -> ScheduleConfig:
    base = ScheduleConfig()
    return ScheduleConfig(
        timezone=str(raw.get("timezone") or base.timezone),
        poll_interval_seconds=max(1.0, _as_float(raw.get("poll_interval_seconds"), base.poll_interval_seconds)),
        tolerance_seconds=max(0, _as_int(raw.get("tolerance_seconds"), base.tolerance_seconds)),
        validity_hours=_as_float(raw.get("validity_hours"), base.validity_hours),
        expiry_warning_seconds=max(1, _as_int(raw.get("expiry_warning_seconds"), base.expiry_warning_seconds)),
        weekdays_only=_as_bool(raw.get("weekdays_only"), base.weekdays_only),
    )


def load_config(path: str = CONFIG_FILE, environ: Optional[Dict[str, str]] = None) -> BotConfig:
    """Read ``path`` and apply ``GUILDBOT_*`` / ``DISCORD_TOKEN`` overrides.

    Unknown keys are ignored and malformed values fall back to defaults, so a
    half-edited config never prevents startup.
    """
    env = os.environ if environ is None else environ
    raw = safe_load_json(path, {})
    if not isinstance(raw, dict):
        logger.warning("⚠️ %s does not hold a JSON object; ignoring it", path)
        raw = {}
    parking_raw = raw.get("parking") if isinstance(raw.get("parking"), dict) else {}
    schedule_raw = raw.get("schedule") if isinstance(raw.get("schedule"), dict) else {}

    idle_hours = _as_float(raw.get("session_idle_timeout_hours"), 0.0)
    cfg = BotConfig(
        discord_token=raw.get("discord_token") or None,
        api_base_url=str(raw.get("api_base_url") or BotConfig.api_base_url),
        data_dir=str(raw.get("data_dir") or BotConfig.data_dir),
        server_host=str(raw.get("server_host") or BotConfig.server_host),
        server_port=_as_int(raw.get("server_port"), BotConfig.server_port),
        debug=_as_bool(raw.get("debug"), False),
        dry_run=_as_bool(raw.get("dry_run"), False),
        log_file=raw.get("log_file") or None,
        reminder_poll_seconds=max(1.0, _as_float(raw.get("reminder_poll_seconds"), BotConfig.reminder_poll_seconds)),
        command_channels=_as_id_list(raw.get("command_channels")),
        command_poll_seconds=max(0.5, _as_float(raw.get("command_poll_seconds"), BotConfig.command_poll_seconds)),
        command_prefixes=[str(p) for p in raw.get("command_prefixes") or ["/", "-"] if str(p)],
        session_idle_timeout_hours=idle_hours if idle_hours > 0 else None,
        parking=_parking_from(parking_raw),
        schedule=_schedule_from(schedule_raw),
    )

    if env.get("DISCORD_TOKEN"):
        cfg.discord_token = env["DISCORD_TOKEN"]
    if env.get("GUILDBOT_DATA_DIR"):
        cfg.data_dir = env["GUILDBOT_DATA_DIR"]
    if env.get("GUILDBOT_PORT"):
        cfg.server_port = _as_int(env["GUILDBOT_PORT"], cfg.server_port)
    if env.get("GUILDBOT_DEBUG"):
        cfg.debug = _as_bool(env["GUILDBOT_DEBUG"], cfg.debug)
    if env.get("GUILDBOT_CHANNELS"):
        cfg.command_channels = _as_id_list([c for c in env["GUILDBOT_CHANNELS"].split(",") if c.strip()])
    if env.get("GUILDBOT_DRY_RUN"):
        cfg.dry_run = _as_bool(env["GUILDBOT_DRY_RUN"], cfg.dry_run)
    return cfg
