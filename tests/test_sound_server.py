"""HTTP API, exercised through aiohttp's test client with a fake launcher."""

import os

import aiohttp
import pytest

from sound_server import STORE_KEY, SUPERVISOR_KEY, create_app
from soundboard.players import NoBackend
from soundboard.store import SoundStore


@pytest.fixture
def make_client(aiohttp_client, tmp_path, launcher):
    async def _make(backend):
        store = SoundStore(str(tmp_path / "data" / "sounds.db"))
        app = create_app(store=store, backend=backend,
                         upload_dir=str(tmp_path / "uploads"), launcher=launcher)
        return await aiohttp_client(app)
    return _make


@pytest.fixture
async def client(make_client, backend):
    return await make_client(backend)


async def upload(client, name="Air horn", filename="horn.mp3",
                 content=b"ID3\x03\x00fake-mpeg-frames", content_type="audio/mpeg"):
    data = aiohttp.FormData()
    if name is not None:
        data.add_field("name", name)
    data.add_field("sound", content, filename=filename, content_type=content_type)
    return await client.post("/api/sounds/upload", data=data)


async def uploaded(client, **kwargs):
    resp = await upload(client, **kwargs)
    assert resp.status == 201, await resp.text()
    return (await resp.json())["sound"]


async def set_setting(client, key, value):
    resp = await client.put(f"/api/settings/{key}", json={"value": value})
    assert resp.status == 200, await resp.text()


# ── service ──

async def test_api_index(client):
    resp = await client.get("/api")
    body = await resp.json()
    assert body["success"] is True
    assert body["endpoints"]["sounds"] == "/api/sounds"


async def test_health_and_player(client):
    body = await (await client.get("/api/health")).json()
    assert body["status"] == "healthy"
    assert body["player"] == "mpv"

    player = (await (await client.get("/api/player")).json())["player"]
    assert player["kind"] == "mpv"
    assert player["executable"] == "/usr/bin/mpv"


async def test_health_degraded_without_player(make_client):
    client = await make_client(NoBackend())
    body = await (await client.get("/api/health")).json()
    assert body["status"] == "degraded"


async def test_cors_headers(client):
    resp = await client.get("/api/health")
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


async def test_web_client_served(client):
    resp = await client.get("/")
    assert resp.status == 200
    assert "Soundboard" in await resp.text()


# ── uploads and catalog ──

async def test_upload_and_list(client, tmp_path):
    sound = await uploaded(client)
    assert sound["name"] == "Air horn"
    assert sound["mime_type"] == "audio/mpeg"
    assert sound["filename"].endswith(".mp3")
    assert os.path.isfile(sound["file_path"])
    assert os.path.dirname(sound["file_path"]) == str(tmp_path / "uploads")

    body = await (await client.get("/api/sounds")).json()
    assert [s["id"] for s in body["sounds"]] == [sound["id"]]


async def test_upload_name_defaults_to_file_stem(client):
    sound = await uploaded(client, name=None, filename="Rimshot.wav", content_type="audio/wav")
    assert sound["name"] == "Rimshot"


@pytest.mark.parametrize("filename, content_type, message", [
    ("notes.txt", "text/plain", "Invalid file type"),
    ("horn.mp3", "application/octet-stream", "Invalid MIME type"),
])
async def test_upload_rejects_non_audio(client, tmp_path, filename, content_type, message):
    resp = await upload(client, filename=filename, content_type=content_type)
    assert resp.status == 400
    assert message in (await resp.json())["error"]
    assert os.listdir(tmp_path / "uploads") == []


async def test_upload_enforces_size_setting(client, tmp_path):
    await set_setting(client, "max_file_size", 8)
    resp = await upload(client, content=b"x" * 64)
    assert resp.status == 400
    assert "File size too large" in (await resp.json())["error"]
    assert os.listdir(tmp_path / "uploads") == []


async def test_upload_without_file(client):
    resp = await client.post("/api/sounds/upload", json={"name": "nothing"})
    assert resp.status == 400
    assert (await resp.json())["error"] == "No file uploaded"


async def test_get_rename_delete(client):
    sound = await uploaded(client)

    resp = await client.get(f"/api/sounds/{sound['id']}")
    assert (await resp.json())["sound"]["name"] == "Air horn"

    resp = await client.patch(f"/api/sounds/{sound['id']}", json={"name": "  Fog horn "})
    assert (await resp.json())["sound"]["name"] == "Fog horn"

    resp = await client.patch(f"/api/sounds/{sound['id']}", json={"name": ""})
    assert resp.status == 400

    resp = await client.delete(f"/api/sounds/{sound['id']}")
    assert resp.status == 200
    assert not os.path.exists(sound["file_path"])
    assert (await client.get(f"/api/sounds/{sound['id']}")).status == 404


async def test_unknown_sound(client):
    assert (await client.get("/api/sounds/nope")).status == 404
    assert (await client.patch("/api/sounds/nope", json={"name": "x"})).status == 404
    assert (await client.delete("/api/sounds/nope")).status == 404
    assert (await client.post("/api/sounds/nope/play")).status == 404


async def test_invalid_json_body(client):
    sound = await uploaded(client)
    resp = await client.patch(f"/api/sounds/{sound['id']}", data=b"{oops",
                              headers={"Content-Type": "application/json"})
    assert resp.status == 400


# ── playback ──

async def test_play_uses_settings(client, launcher, backend):
    sound = await uploaded(client)
    await set_setting(client, "volume", 55)

    resp = await client.post(f"/api/sounds/{sound['id']}/play")
    body = await resp.json()
    assert resp.status == 200
    assert body["playbackMode"] == "queue"
    assert launcher.calls == [(sound["file_path"], backend.build_args(55))]

    status = (await (await client.get("/api/sounds/status/current")).json())["status"]
    assert status == {
        "isPlaying": True,
        "currentSound": sound["file_path"],
        "queueLength": 0,
        "queue": [],
    }


async def test_unusable_stored_volume_falls_back(client, launcher, backend):
    sound = await uploaded(client)
    client.server.app[STORE_KEY].set_setting("volume", "inf")

    resp = await client.post(f"/api/sounds/{sound['id']}/play")
    assert resp.status == 200
    assert launcher.calls[0][1] == backend.build_args(80)


async def test_queue_mode_reports_pending(client, launcher):
    first = await uploaded(client, name="One")
    second = await uploaded(client, name="Two")
    await client.post(f"/api/sounds/{first['id']}/play")
    await client.post(f"/api/sounds/{second['id']}/play")

    status = (await (await client.get("/api/sounds/status/current")).json())["status"]
    assert status["currentSound"] == first["file_path"]
    assert status["queue"] == [second["file_path"]]


async def test_block_mode_answers_409(client, launcher):
    sound = await uploaded(client)
    await set_setting(client, "playback_mode", "block")

    assert (await client.post(f"/api/sounds/{sound['id']}/play")).status == 200
    resp = await client.post(f"/api/sounds/{sound['id']}/play")
    assert resp.status == 409
    assert (await resp.json())["error"].startswith("Already playing")
    assert len(launcher.calls) == 1


async def test_interrupt_mode_restarts(client, launcher):
    sound = await uploaded(client)
    await set_setting(client, "playback_mode", "interrupt")

    await client.post(f"/api/sounds/{sound['id']}/play")
    resp = await client.post(f"/api/sounds/{sound['id']}/play")
    assert resp.status == 200
    assert launcher.handles[0].killed
    assert len(launcher.live) == 1


async def test_play_without_player_answers_503(make_client):
    client = await make_client(NoBackend())
    sound = await uploaded(client)
    resp = await client.post(f"/api/sounds/{sound['id']}/play")
    assert resp.status == 503


async def test_play_launch_failure_answers_502(client, launcher):
    sound = await uploaded(client)
    await set_setting(client, "playback_mode", "interrupt")
    launcher.spawn_fails.add(sound["file_path"])

    resp = await client.post(f"/api/sounds/{sound['id']}/play")
    assert resp.status == 502


async def test_play_missing_file(client):
    sound = await uploaded(client)
    os.unlink(sound["file_path"])
    resp = await client.post(f"/api/sounds/{sound['id']}/play")
    assert resp.status == 404
    assert (await resp.json())["error"] == "File not found."


async def test_stop(client, launcher, wait_until):
    sound = await uploaded(client)
    await client.post(f"/api/sounds/{sound['id']}/play")

    resp = await client.post("/api/sounds/stop")
    assert resp.status == 200
    assert launcher.handles[0].killed

    supervisor = client.server.app[SUPERVISOR_KEY]
    await wait_until(lambda: not supervisor.is_playing)


async def test_deleting_current_sound_keeps_queue(client, launcher, wait_until):
    first = await uploaded(client, name="One")
    second = await uploaded(client, name="Two")
    await client.post(f"/api/sounds/{first['id']}/play")
    await client.post(f"/api/sounds/{second['id']}/play")

    await client.delete(f"/api/sounds/{first['id']}")
    assert launcher.handles[0].killed

    supervisor = client.server.app[SUPERVISOR_KEY]
    await wait_until(lambda: supervisor.current == second["file_path"])


async def test_deleting_queued_sound_drops_it(client, launcher):
    first = await uploaded(client, name="One")
    second = await uploaded(client, name="Two")
    await client.post(f"/api/sounds/{first['id']}/play")
    await client.post(f"/api/sounds/{second['id']}/play")

    await client.delete(f"/api/sounds/{second['id']}")

    status = (await (await client.get("/api/sounds/status/current")).json())["status"]
    assert status["currentSound"] == first["file_path"]
    assert status["queue"] == []
    assert not launcher.handles[0].killed


# ── settings ──

async def test_settings_hide_pin(client):
    settings = (await (await client.get("/api/settings")).json())["settings"]
    assert settings["playback_mode"] == "queue"
    assert "pin_code" not in settings
    assert (await client.get("/api/settings/pin_code")).status == 404


async def test_get_single_setting(client):
    body = await (await client.get("/api/settings/volume")).json()
    assert body["setting"] == {"key": "volume", "value": "80"}
    assert (await client.get("/api/settings/missing")).status == 404


@pytest.mark.parametrize("key, value", [
    ("playback_mode", "shuffle"),
    ("volume", 150),
    ("volume", "loud"),
    ("max_file_size", 0),
    ("pin_enabled", "maybe"),
    ("pin_code", "0000"),
])
async def test_invalid_settings_rejected(client, key, value):
    resp = await client.put(f"/api/settings/{key}", json={"value": value})
    assert resp.status == 400


async def test_setting_requires_value(client):
    resp = await client.put("/api/settings/volume", json={})
    assert resp.status == 400


async def test_boolean_setting(client):
    await set_setting(client, "pin_enabled", True)
    body = await (await client.get("/api/pin/enabled")).json()
    assert body["enabled"] is True


# ── PIN ──

async def test_pin_verify(client):
    assert (await client.post("/api/pin/verify", json={"pin": "1234"})).status == 200
    assert (await client.post("/api/pin/verify", json={"pin": "0000"})).status == 401
    assert (await client.post("/api/pin/verify", json={})).status == 400


async def test_pin_change(client):
    resp = await client.post("/api/pin/change", json={"currentPin": "9999", "newPin": "4321"})
    assert resp.status == 401
    resp = await client.post("/api/pin/change", json={"currentPin": "1234", "newPin": "12"})
    assert resp.status == 400
    resp = await client.post("/api/pin/change", json={"currentPin": "1234", "newPin": "246810"})
    assert resp.status == 200

    assert (await client.post("/api/pin/verify", json={"pin": "246810"})).status == 200
    assert (await client.post("/api/pin/verify", json={"pin": "1234"})).status == 401
