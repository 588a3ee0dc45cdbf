# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
SoundStore - SQLite catalog of uploaded clips plus key/value settings.

Schema:
    sounds(id TEXT PK, name, filename UNIQUE, file_path, mime_type,
           file_size, duration, uploaded_at)
    settings(key TEXT PK, value TEXT)

Settings are stored as strings; callers parse them (see
players.volume.parse_volume).  Missing defaults are inserted on open and
never overwrite values the user already changed.
"""

import logging
import os
import sqlite3
import uuid

log = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "playback_mode": "queue",
    "max_file_size": "10485760",
    "volume": "80",
    "pin_enabled": "false",
    "pin_code": "1234",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sounds (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    filename    TEXT NOT NULL UNIQUE,
    file_path   TEXT NOT NULL,
    mime_type   TEXT,
    file_size   INTEGER,
    duration    REAL,
    uploaded_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SoundStore:

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def open(self) -> None:
        if self.db_path != ":memory:":
            data_dir = os.path.dirname(os.path.abspath(self.db_path))
            os.makedirs(data_dir, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.executescript(_SCHEMA)
        self.conn.executemany(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            DEFAULT_SETTINGS.items(),
        )
        self.conn.commit()
        log.info("Database ready at %s", self.db_path)

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _db(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError("DB not open")
        return self.conn

    # ── Sounds ──

    def list_sounds(self) -> list:
        rows = self._db().execute(
            "SELECT * FROM sounds ORDER BY uploaded_at DESC, rowid DESC"
        ).fetchall()
        return [dict(row) for row in rows]

    def get_sound(self, sound_id: str) -> dict | None:
        row = self._db().execute("SELECT * FROM sounds WHERE id = ?", (sound_id,)).fetchone()
        return dict(row) if row else None

    def add_sound(self, name: str, filename: str, file_path: str,
                  mime_type: str | None = None, file_size: int | None = None) -> dict:
        sound_id = str(uuid.uuid4())
        db = self._db()
        db.execute(
            """
            INSERT INTO sounds (id, name, filename, file_path, mime_type, file_size, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?, datetime('now'))
            """,
            (sound_id, name, filename, file_path, mime_type, file_size),
        )
        db.commit()
        log.info("Sound added: %s (%s)", name, filename)
        return self.get_sound(sound_id)

    def rename_sound(self, sound_id: str, name: str) -> dict | None:
        db = self._db()
        cur = db.execute("UPDATE sounds SET name = ? WHERE id = ?", (name, sound_id))
        db.commit()
        if cur.rowcount == 0:
            return None
        return self.get_sound(sound_id)

    def delete_sound(self, sound_id: str) -> dict | None:
        """Delete the row and its file.  Returns the deleted row, or None."""
        sound = self.get_sound(sound_id)
        if sound is None:
            return None
        try:
            os.unlink(sound["file_path"])
        except FileNotFoundError:
            log.warning("File already gone: %s", sound["file_path"])
        db = self._db()
        db.execute("DELETE FROM sounds WHERE id = ?", (sound_id,))
        db.commit()
        log.info("Sound deleted: %s", sound["name"])
        return sound

    # ── Settings ──

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        row = self._db().execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else default

    def all_settings(self) -> dict:
        rows = self._db().execute("SELECT key, value FROM settings").fetchall()
        return {row["key"]: row["value"] for row in rows}

    def set_setting(self, key: str, value) -> None:
        value = str(value)
        db = self._db()
        db.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        db.commit()
        log.info("Setting %s = %s", key, "****" if key == "pin_code" else value)
