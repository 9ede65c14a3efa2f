"""Local Flask surface: health/status JSON and a command endpoint for testing."""

from __future__ import annotations

import time
from dataclasses import asdict
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from guildbot.games.rules import HANGMAN, NUMBER_GUESS, TICTACTOE


def create_app(
    *,
    router,
    sessions,
    games=None,
    schedule_store=None,
    reminder_store=None,
    runners: Optional[Dict[str, Any]] = None,
    started_ts: Optional[float] = None,
) -> Flask:
    app = Flask(__name__)
    started = started_ts or time.time()
    workers = runners or {}

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"ok": True, "status": "running", "uptime_seconds": int(time.time() - started)})

    @app.route("/status", methods=["GET"])
    def status():
        payload: Dict[str, Any] = {
            "sessions": {
                "total": sessions.active(),
                TICTACTOE: sessions.active(TICTACTOE),
                HANGMAN: sessions.active(HANGMAN),
                NUMBER_GUESS: sessions.active(NUMBER_GUESS),
            },
            "workers": {name: bool(getattr(w, "running", False)) for name, w in workers.items()},
        }
        if games is not None:
            payload["games_started"] = games.started_counts()
        if schedule_store is not None:
            data = schedule_store.snapshot()
            payload["parking"] = {
                "profiles": len(data.profiles),
                "schedules": len(data.schedules),
                "enabled": sum(1 for e in data.schedules.values() if e.enabled),
                "pending_fires": sum(len(e.pending_fires) for e in data.schedules.values()),
            }
        if reminder_store is not None:
            payload["reminders"] = {"pending": reminder_store.count()}
        return jsonify(payload)

    @app.route("/command", methods=["POST"])
    def command():
        body = request.get_json(silent=True) or {}
        text = body.get("text")
        try:
            sender_key = int(body.get("sender_key"))
            channel_id = int(body.get("channel_id") or 0)
            reply_to = int(body["reply_to"]) if body.get("reply_to") is not None else None
        except (TypeError, ValueError):
            return jsonify({"error": "sender_key, channel_id and reply_to must be integers"}), 400
        if not isinstance(text, str) or not text.strip():
            return jsonify({"error": "text is required"}), 400
        reply = router.route(
            text,
            sender_key=sender_key,
            sender_name=str(body.get("sender_name") or sender_key),
            channel_id=channel_id,
            reply_to=reply_to,
        )
        if reply is None:
            return jsonify({"handled": False})
        return jsonify({"handled": True, "reply": asdict(reply)})

    return app
