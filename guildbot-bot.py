"""guildbot process root.

Builds the stores, managers and background workers from ``config.json`` and
serves the local Flask status surface until interrupted.
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from guildbot.channel_poller import ChannelPoller
from guildbot.chat_client import DiscordRestClient, LogChatClient
from guildbot.commands import CommandRouter
from guildbot.config import CONFIG_FILE, load_config
from guildbot.games import GameManager
from guildbot.logs import CleanLogger, configure_logging
from guildbot.parking_client import MobileParkingClient
from guildbot.parking_manager import ParkingManager, RateLimiter
from guildbot.reminder_manager import ReminderManager
from guildbot.schedule_runner import ReminderRunner, ScheduleRunner
from guildbot.schedule_store import ReminderStore, ScheduleStore
from guildbot.session_store import SessionStore
from guildbot.web import create_app


class _DryRunExecutor:
    def __init__(self, clean_log) -> None:
        self.clean_log = clean_log

    def execute(self, profile) -> None:
        self.clean_log(f"[dry-run] would register parking for {profile.plate}", "🚗", True, False)


def _session_reaper(sessions: SessionStore, stop: threading.Event, clean_log, interval: float = 300.0) -> None:
    while not stop.wait(interval):
        reaped = sessions.reap_idle()
        if reaped:
            clean_log(f"Reaped {reaped} idle game session(s)", "🧹")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the guildbot chat bot")
    parser.add_argument("--config", default=CONFIG_FILE, help="path to config.json")
    parser.add_argument("--dry-run", action="store_true", help="log outgoing messages instead of sending them")
    args = parser.parse_args(argv)

    cfg = load_config(args.config)
    if args.dry_run:
        cfg.dry_run = True
    configure_logging(cfg.debug, log_file=cfg.log_file)
    clean_log = CleanLogger(debug=cfg.debug)
    clean_log("Starting guildbot...", "🚀", show_always=True)

    if not cfg.discord_token and not cfg.dry_run:
        clean_log("No discord_token configured (set DISCORD_TOKEN or use --dry-run)", "❌", show_always=True)
        return 2

    try:
        tz = ZoneInfo(cfg.schedule.timezone)
    except ZoneInfoNotFoundError:
        clean_log(f"Unknown timezone {cfg.schedule.timezone!r}", "❌", show_always=True)
        return 2

    if cfg.dry_run:
        chat = LogChatClient()
        executor = _DryRunExecutor(clean_log)
    else:
        chat = DiscordRestClient(cfg.discord_token, base_url=cfg.api_base_url)
        executor = MobileParkingClient(cfg.parking)

    idle_timeout = cfg.session_idle_timeout_hours * 3600 if cfg.session_idle_timeout_hours else None
    sessions = SessionStore(idle_timeout=idle_timeout)

    schedule_store = ScheduleStore(
        cfg.parking_data_path,
        key_path=cfg.parking_key_path,
        encrypt=cfg.parking.encrypt_profiles,
        tz=tz,
    )
    schedule_store.load()
    reminder_store = ReminderStore(cfg.reminders_path)
    reminder_store.load()

    games = GameManager(sessions=sessions, clean_log=clean_log, is_bot=chat.is_bot)
    parking = ParkingManager(
        store=schedule_store,
        executor=executor,
        clean_log=clean_log,
        rate_limiter=RateLimiter(limit=cfg.parking.rate_limit_per_hour),
        tz=tz,
        country_code=cfg.parking.country_code,
        area_key=cfg.parking.area_key,
        validity_hours=cfg.schedule.validity_hours,
    )
    reminders = ReminderManager(store=reminder_store, clean_log=clean_log)
    router = CommandRouter(
        games=games,
        parking=parking,
        reminders=reminders,
        clean_log=clean_log,
        prefixes=cfg.command_prefixes,
    )

    schedule_runner = ScheduleRunner(
        store=schedule_store,
        executor=executor,
        notifier=chat,
        clean_log=clean_log,
        tz=tz,
        poll_interval=cfg.schedule.poll_interval_seconds,
        tolerance_seconds=cfg.schedule.tolerance_seconds,
        validity=timedelta(hours=cfg.schedule.validity_hours),
        warn_before=timedelta(seconds=cfg.schedule.expiry_warning_seconds),
        weekdays_only=cfg.schedule.weekdays_only,
    )
    reminder_runner = ReminderRunner(
        store=reminder_store,
        chat=chat,
        clean_log=clean_log,
        poll_interval=cfg.reminder_poll_seconds,
    )
    workers = {"schedule": schedule_runner, "reminders": reminder_runner}
    if cfg.command_channels:
        workers["channels"] = ChannelPoller(
            chat=chat,
            router=router,
            channel_ids=cfg.command_channels,
            clean_log=clean_log,
            poll_interval=cfg.command_poll_seconds,
        )
    else:
        clean_log("No command_channels configured; commands only via POST /command", "⚠️", show_always=True)

    for worker in workers.values():
        worker.start()

    stop = threading.Event()
    if sessions.idle_timeout:
        threading.Thread(target=_session_reaper, args=(sessions, stop, clean_log), daemon=True).start()

    app = create_app(
        router=router,
        sessions=sessions,
        games=games,
        schedule_store=schedule_store,
        reminder_store=reminder_store,
        runners=workers,
    )
    clean_log(f"Launching Flask web interface on port {cfg.server_port}...", "🌐", show_always=True)
    threading.Thread(
        target=app.run,
        kwargs={"host": cfg.server_host, "port": cfg.server_port, "debug": False, "use_reloader": False},
        daemon=True,
    ).start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        clean_log("Shutting down...", "🛑", show_always=True)
    finally:
        stop.set()
        for worker in workers.values():
            worker.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
