from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
import sys

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from guildbot.config import BotConfig, load_config


class LoadConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory(prefix="config_test_")
        self.addCleanup(self.tmpdir.cleanup)
        self.path = os.path.join(self.tmpdir.name, "config.json")

    def _write(self, payload) -> None:
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh)

    def test_missing_file_gives_defaults(self):
        cfg = load_config(self.path, environ={})
        self.assertIsNone(cfg.discord_token)
        self.assertEqual(cfg.data_dir, "data")
        self.assertEqual(cfg.schedule.timezone, "Europe/Copenhagen")
        self.assertEqual(cfg.parking.rate_limit_per_hour, 3)
        self.assertEqual(cfg.command_prefixes, ["/", "-"])
        self.assertIsNone(cfg.session_idle_timeout_hours)

    def test_values_and_sections_are_read(self):
        self._write({
            "discord_token": "abc",
            "data_dir": "/srv/bot",
            "server_port": "8080",
            "command_channels": [123, "456", "nope"],
            "session_idle_timeout_hours": 2,
            "parking": {"area_key": "XYZ-1", "duration_minutes": 120},
            "schedule": {"tolerance_seconds": 45, "weekdays_only": "no"},
        })
        cfg = load_config(self.path, environ={})
        self.assertEqual(cfg.discord_token, "abc")
        self.assertEqual(cfg.server_port, 8080)
        self.assertEqual(cfg.command_channels, [123, 456])
        self.assertEqual(cfg.session_idle_timeout_hours, 2.0)
        self.assertEqual(cfg.parking.area_key, "XYZ-1")
        self.assertEqual(cfg.parking.duration_minutes, 120)
        self.assertEqual(cfg.parking.area_id, 1956)
        self.assertEqual(cfg.schedule.tolerance_seconds, 45)
        self.assertFalse(cfg.schedule.weekdays_only)
        self.assertEqual(cfg.reminders_path, os.path.join("/srv/bot", "reminders.json"))

    def test_malformed_values_fall_back(self):
        self._write({"server_port": "many", "schedule": "weekly", "parking": {"rate_limit_per_hour": 0}})
        cfg = load_config(self.path, environ={})
        self.assertEqual(cfg.server_port, BotConfig.server_port)
        self.assertEqual(cfg.schedule.poll_interval_seconds, 60.0)
        self.assertEqual(cfg.parking.rate_limit_per_hour, 1)

    def test_non_object_file_is_ignored(self):
        self._write([1, 2, 3])
        self.assertEqual(load_config(self.path, environ={}).server_port, 5000)

    def test_environment_overrides(self):
        self._write({"discord_token": "from-file", "dry_run": False})
        cfg = load_config(
            self.path,
            environ={
                "DISCORD_TOKEN": "from-env",
                "GUILDBOT_DATA_DIR": "/tmp/gb",
                "GUILDBOT_PORT": "9000",
                "GUILDBOT_DEBUG": "true",
                "GUILDBOT_CHANNELS": "11, 22,",
                "GUILDBOT_DRY_RUN": "1",
            },
        )
        self.assertEqual(cfg.discord_token, "from-env")
        self.assertEqual(cfg.data_dir, "/tmp/gb")
        self.assertEqual(cfg.server_port, 9000)
        self.assertTrue(cfg.debug)
        self.assertEqual(cfg.command_channels, [11, 22])
        self.assertTrue(cfg.dry_run)


if __name__ == "__main__":
    unittest.main()
