#!/usr/bin/env python3
# Pi Soundboard
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Pi Soundboard HTTP service (pi-soundboard)

Upload short clips, play them on the Pi's speaker, and control how a new
play request treats the one already playing (queue / interrupt / block).
Serves the JSON API under /api and the web client from web/.

Port: 3000 (server.port in config.json, or $PORT)
"""

import asyncio
import hmac
import logging
import os
import re
import sqlite3
import sys

from aiohttp import web

# Ensure services/ is on the path for sibling imports when run as a script
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from soundboard.config import PLAYBACK_MODES, cfg
from soundboard.errors import NotFound, SoundboardError
from soundboard.players import PlayerBackend, select_backend
from soundboard.players.launcher import DEFAULT_KILL_TIMEOUT, launch
from soundboard.players.supervisor import DEFAULT_STARTUP_GRACE, PlaybackSupervisor
from soundboard.players.volume import DEFAULT_VOLUME, parse_volume
from soundboard.store import SoundStore
from soundboard.uploads import receive_upload
from soundboard.watchdog import notify_status, watchdog_loop

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pi-soundboard")

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
DEFAULT_PORT = 3000
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
VERSION = "1.0.0"
WEB_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "web")

PIN_RE = re.compile(r"^\d{4,6}$")

SUPERVISOR_KEY = web.AppKey("supervisor", PlaybackSupervisor)
STORE_KEY = web.AppKey("store", SoundStore)
UPLOAD_DIR_KEY = web.AppKey("upload_dir", str)
WATCHDOG_KEY = web.AppKey("watchdog", asyncio.Task)


def _ok(payload: dict | None = None, status: int = 200) -> web.Response:
    return web.json_response({"success": True, **(payload or {})}, status=status)


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


async def _read_json(request: web.Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise SoundboardError("invalid json", status=400)
    if not isinstance(data, dict):
        raise SoundboardError("invalid json", status=400)
    return data


def _get_sound(request: web.Request) -> dict:
    sound = request.app[STORE_KEY].get_sound(request.match_info["id"])
    if sound is None:
        raise NotFound("Sound not found")
    return sound


def _max_file_size(store: SoundStore) -> int:
    fallback = int(cfg("storage", "max_file_size", default=DEFAULT_MAX_FILE_SIZE))
    raw = store.get_setting("max_file_size")
    try:
        size = int(raw)
    except (TypeError, ValueError):
        return fallback
    return size if size > 0 else fallback


# ---------------------------------------------------------------------------
# HTTP handlers - sounds and playback
# ---------------------------------------------------------------------------
async def handle_list_sounds(request: web.Request) -> web.Response:
    """GET /api/sounds - newest first."""
    return _ok({"sounds": request.app[STORE_KEY].list_sounds()})


async def handle_get_sound(request: web.Request) -> web.Response:
    return _ok({"sound": _get_sound(request)})


async def handle_upload(request: web.Request) -> web.Response:
    """POST /api/sounds/upload - multipart field 'sound', optional 'name'."""
    store = request.app[STORE_KEY]
    stored = await receive_upload(request, request.app[UPLOAD_DIR_KEY], _max_file_size(store))
    try:
        sound = store.add_sound(
            stored["name"], stored["filename"], stored["file_path"],
            stored["mime_type"], stored["file_size"],
        )
    except Exception:
        try:
            os.unlink(stored["file_path"])
        except OSError as e:
            logger.error("Error deleting file: %s", e)
        raise
    return _ok({"message": "Sound uploaded successfully", "sound": sound}, status=201)


async def handle_rename(request: web.Request) -> web.Response:
    """PATCH /api/sounds/{id} - body {"name": "..."}."""
    data = await _read_json(request)
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return _error("Name is required", 400)
    sound = request.app[STORE_KEY].rename_sound(request.match_info["id"], name.strip())
    if sound is None:
        raise NotFound("Sound not found")
    return _ok({"message": "Sound renamed successfully", "sound": sound})


async def handle_delete(request: web.Request) -> web.Response:
    sound = _get_sound(request)
    request.app[SUPERVISOR_KEY].discard(sound["file_path"])
    request.app[STORE_KEY].delete_sound(sound["id"])
    return _ok({"message": "Sound deleted successfully"})


async def handle_play(request: web.Request) -> web.Response:
    """POST /api/sounds/{id}/play - mode and volume come from settings."""
    sound = _get_sound(request)
    if not os.path.isfile(sound["file_path"]):
        raise NotFound("File not found.")

    store = request.app[STORE_KEY]
    default_mode = cfg("playback", "default_mode", default="queue")
    mode = store.get_setting("playback_mode") or default_mode
    if mode not in PLAYBACK_MODES:
        logger.warning("Invalid playback_mode setting '%s' - using %s", mode, default_mode)
        mode = default_mode
    volume = parse_volume(
        store.get_setting("volume"),
        default=int(cfg("playback", "default_volume", default=DEFAULT_VOLUME)),
    )

    await request.app[SUPERVISOR_KEY].submit(sound["file_path"], mode, volume)
    return _ok({
        "message": f"Sound is playing (mode: {mode})",
        "playbackMode": mode,
    })


async def handle_stop(request: web.Request) -> web.Response:
    request.app[SUPERVISOR_KEY].stop()
    return _ok({"message": "Playback stopped"})


async def handle_status(request: web.Request) -> web.Response:
    """GET /api/sounds/status/current - playback snapshot."""
    return _ok({"status": request.app[SUPERVISOR_KEY].status()})


async def handle_player(request: web.Request) -> web.Response:
    """GET /api/player - which backend was detected at startup."""
    return _ok({"player": request.app[SUPERVISOR_KEY].backend.describe()})


# ---------------------------------------------------------------------------
# HTTP handlers - settings and PIN
# ---------------------------------------------------------------------------
def _public_settings(settings: dict) -> dict:
    return {k: v for k, v in settings.items() if k != "pin_code"}


def _validate_setting(key: str, value: str) -> str | None:
    """Return an error message, or None when the value is acceptable."""
    if key == "pin_code":
        return "Use /api/pin/change to change the PIN"
    if key == "playback_mode" and value not in PLAYBACK_MODES:
        return f"Invalid playback mode. Valid modes are: {', '.join(PLAYBACK_MODES)}"
    if key == "max_file_size":
        try:
            if int(value) <= 0:
                raise ValueError
        except ValueError:
            return "max_file_size must be a positive number"
    if key == "volume":
        try:
            if not 0 <= int(value) <= 100:
                raise ValueError
        except ValueError:
            return "Volume must be a number between 0 and 100"
    if key == "pin_enabled" and value not in ("true", "false"):
        return "pin_enabled must be 'true' or 'false'"
    return None


async def handle_list_settings(request: web.Request) -> web.Response:
    return _ok({"settings": _public_settings(request.app[STORE_KEY].all_settings())})


async def handle_get_setting(request: web.Request) -> web.Response:
    key = request.match_info["key"]
    value = request.app[STORE_KEY].get_setting(key)
    if value is None or key == "pin_code":
        raise NotFound("Setting not found")
    return _ok({"setting": {"key": key, "value": value}})


async def handle_update_setting(request: web.Request) -> web.Response:
    """PUT /api/settings/{key} - body {"value": ...}."""
    key = request.match_info["key"]
    data = await _read_json(request)
    if data.get("value") is None:
        return _error("Value is required", 400)
    value = data["value"]
    if isinstance(value, bool):
        value = "true" if value else "false"
    value = str(value).strip()

    problem = _validate_setting(key, value)
    if problem:
        return _error(problem, 400)

    store = request.app[STORE_KEY]
    store.set_setting(key, value)
    return _ok({
        "message": "Setting updated successfully",
        "setting": {"key": key, "value": store.get_setting(key)},
    })


async def handle_pin_enabled(request: web.Request) -> web.Response:
    enabled = request.app[STORE_KEY].get_setting("pin_enabled") == "true"
    return _ok({"enabled": enabled})


async def handle_pin_verify(request: web.Request) -> web.Response:
    data = await _read_json(request)
    pin = data.get("pin")
    if not pin:
        return _error("PIN is required", 400)
    stored = request.app[STORE_KEY].get_setting("pin_code", "1234")
    if not hmac.compare_digest(str(pin), stored):
        logger.warning("PIN verification failed from %s", request.remote)
        return _error("Invalid PIN", 401)
    return _ok({"message": "PIN verified"})


async def handle_pin_change(request: web.Request) -> web.Response:
    data = await _read_json(request)
    current, new = data.get("currentPin"), data.get("newPin")
    if not current or not new:
        return _error("Current PIN and new PIN are required", 400)
    new = str(new)
    if not PIN_RE.match(new):
        return _error("PIN must be 4-6 digits", 400)
    store = request.app[STORE_KEY]
    if not hmac.compare_digest(str(current), store.get_setting("pin_code", "1234")):
        return _error("Current PIN is incorrect", 401)
    store.set_setting("pin_code", new)
    return _ok({"message": "PIN changed successfully"})


# ---------------------------------------------------------------------------
# HTTP handlers - service
# ---------------------------------------------------------------------------
async def handle_api_index(request: web.Request) -> web.Response:
    return _ok({
        "message": "Raspberry Pi Sound Board API",
        "version": VERSION,
        "endpoints": {
            "sounds": "/api/sounds",
            "settings": "/api/settings",
            "pin": "/api/pin",
            "player": "/api/player",
        },
    })


async def handle_health(request: web.Request) -> web.Response:
    supervisor = request.app[SUPERVISOR_KEY]
    return _ok({
        "status": "healthy" if supervisor.backend.available else "degraded",
        "player": supervisor.backend.kind,
    })


async def handle_index(request: web.Request) -> web.StreamResponse:
    return web.FileResponse(os.path.join(WEB_DIR, "index.html"))


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
@web.middleware
async def error_middleware(request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except SoundboardError as e:
        if e.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
        else:
            logger.info("%s %s -> %d: %s", request.method, request.path, e.status, e.message)
        return _error(e.message, e.status)
    except ValueError as e:
        return _error(str(e), 400)
    except sqlite3.IntegrityError:
        return _error("A sound with this filename already exists.", 409)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error("Internal server error", 500)


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response()
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


# ---------------------------------------------------------------------------
# App lifecycle
# ---------------------------------------------------------------------------
async def on_startup(app: web.Application):
    store = app[STORE_KEY]
    if store.conn is None:
        store.open()
    supervisor = app[SUPERVISOR_KEY]
    app[WATCHDOG_KEY] = asyncio.create_task(watchdog_loop(status_fn=supervisor.status))
    logger.info("Soundboard ready - player %s, uploads in %s",
                supervisor.backend.kind, app[UPLOAD_DIR_KEY])


async def on_cleanup(app: web.Application):
    task = app.get(WATCHDOG_KEY)
    if task is not None:
        task.cancel()
    await app[SUPERVISOR_KEY].close()
    app[STORE_KEY].close()


def _log_event(supervisor: PlaybackSupervisor):
    def listener(event, file_path, error):
        if event == "error":
            logger.warning("Playback error for %s: %s", os.path.basename(file_path), error)
        notify_status(supervisor.status())
    return listener


def create_app(store: SoundStore | None = None, backend: PlayerBackend | None = None,
               upload_dir: str | None = None, launcher=launch) -> web.Application:
    if store is None:
        store = SoundStore(cfg("storage", "database", default="./data/sounds.db"))
    if backend is None:
        backend = select_backend(preferred=cfg("player", "preferred"))
    if upload_dir is None:
        upload_dir = cfg("storage", "uploads", default="./uploads")

    supervisor = PlaybackSupervisor(
        backend,
        launcher=launcher,
        kill_timeout=float(cfg("player", "kill_timeout", default=DEFAULT_KILL_TIMEOUT)),
        startup_grace=float(cfg("player", "startup_grace", default=DEFAULT_STARTUP_GRACE)),
    )
    supervisor.add_listener(_log_event(supervisor))

    app = web.Application(middlewares=[cors_middleware, error_middleware])
    app[STORE_KEY] = store
    app[SUPERVISOR_KEY] = supervisor
    app[UPLOAD_DIR_KEY] = upload_dir

    app.router.add_get("/api", handle_api_index)
    app.router.add_get("/api/health", handle_health)
    app.router.add_get("/api/player", handle_player)

    app.router.add_get("/api/sounds", handle_list_sounds)
    app.router.add_post("/api/sounds/upload", handle_upload)
    app.router.add_post("/api/sounds/stop", handle_stop)
    app.router.add_get("/api/sounds/status/current", handle_status)
    app.router.add_get("/api/sounds/{id}", handle_get_sound)
    app.router.add_patch("/api/sounds/{id}", handle_rename)
    app.router.add_delete("/api/sounds/{id}", handle_delete)
    app.router.add_post("/api/sounds/{id}/play", handle_play)

    app.router.add_get("/api/settings", handle_list_settings)
    app.router.add_get("/api/settings/{key}", handle_get_setting)
    app.router.add_put("/api/settings/{key}", handle_update_setting)

    app.router.add_get("/api/pin/enabled", handle_pin_enabled)
    app.router.add_post("/api/pin/verify", handle_pin_verify)
    app.router.add_post("/api/pin/change", handle_pin_change)

    if os.path.isdir(WEB_DIR):
        app.router.add_get("/", handle_index)
        app.router.add_static("/static", os.path.join(WEB_DIR, "static"))

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def main():
    app = create_app()
    host = cfg("server", "host", default="0.0.0.0")
    port = int(cfg("server", "port", default=DEFAULT_PORT))
    web.run_app(app, host=host, port=port, print=lambda msg: logger.info(msg))


if __name__ == "__main__":
    main()
