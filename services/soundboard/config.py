# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Shared configuration loader for the Pi Soundboard service.

Loads a single JSON config file per device.  Search order:
  1. /etc/pi-soundboard/config.json   (deployed by the installer)
  2. config.json                       (CWD - handy for local dev)
  3. ../../config/default.json         (repo fallback)

Deploy-time paths can be overridden from the environment, like the
systemd EnvironmentFile does on the Pi:
  PORT, DATABASE_PATH, UPLOAD_DIR, MAX_FILE_SIZE

Usage:
    from soundboard.config import cfg

    port       = cfg("server", "port", default=3000)
    db_path    = cfg("storage", "database", default="./data/sounds.db")
    preferred  = cfg("player", "preferred")
    player     = cfg("player")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/pi-soundboard/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]

# (section, key) -> environment variable
_ENV_OVERRIDES = {
    ("server", "port"): "PORT",
    ("storage", "database"): "DATABASE_PATH",
    ("storage", "uploads"): "UPLOAD_DIR",
    ("storage", "max_file_size"): "MAX_FILE_SIZE",
}

PLAYBACK_MODES = ("queue", "interrupt", "block")


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    server = config.get("server") or {}
    port = server.get("port")
    if port is not None and not isinstance(port, int):
        logger.warning("Config %s: server.port should be an integer, got %r", path, port)
    playback = config.get("playback") or {}
    mode = playback.get("default_mode", "queue")
    if mode not in PLAYBACK_MODES:
        logger.warning("Config %s: unknown playback.default_mode '%s'", path, mode)
    volume = playback.get("default_volume", 80)
    if not isinstance(volume, int) or not 0 <= volume <= 100:
        logger.warning("Config %s: playback.default_volume should be 0-100, got %r", path, volume)
    player = config.get("player") or {}
    for key in ("kill_timeout", "startup_grace"):
        val = player.get(key)
        if val is not None and (not isinstance(val, (int, float)) or val < 0):
            logger.warning("Config %s: player.%s should be a non-negative number", path, key)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _SEARCH_PATHS:
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found - using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("server")                     → config["server"]
    cfg("server", "port")             → $PORT or config["server"]["port"]
    cfg("player", "kill_timeout", default=2)  → config["player"]["kill_timeout"] or 2
    """
    if key is not None:
        env_name = _ENV_OVERRIDES.get((section, key))
        if env_name and os.getenv(env_name):
            return os.getenv(env_name)
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
