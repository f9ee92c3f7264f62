"""
Shared fakes for the bridge tests.

FakeClient          — in-memory stand-in for RemoteClient (records every call)
FakeSuperConductor  — aiohttp app speaking the SuperConductor internal API,
                      capturing every request as (method, path_qs)
"""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from superconductor_bridge.lib import config


def make_group(group_id, name, *timeline_ids):
    """One entry of ``rundown.groups`` with a single part."""
    return {
        "id": group_id,
        "name": name,
        "parts": [{"timeline": [{"obj": {"id": t}} for t in timeline_ids]}],
    }


class FakeClient:
    def __init__(self, rundowns=None, playing=()):
        # rundown id -> list of group payloads, or an exception to raise
        self.rundowns = dict(rundowns or {})
        self.rundown_list_error = None
        self.playing = set(playing)        # {(rundown_id, obj_id)}
        self.probe_errors = {}             # rundown_id -> exception
        self.command_error = None
        self.calls = []

    async def list_rundowns(self):
        self.calls.append(("list_rundowns",))
        if self.rundown_list_error:
            raise self.rundown_list_error
        return list(self.rundowns)

    async def get_rundown_groups(self, rundown_id):
        self.calls.append(("get_rundown_groups", rundown_id))
        value = self.rundowns[rundown_id]
        if isinstance(value, Exception):
            raise value
        return value

    async def _command(self, name, rundown_id, group_id):
        self.calls.append((name, rundown_id, group_id))
        if self.command_error:
            raise self.command_error

    async def play_group(self, rundown_id, group_id):
        await self._command("play_group", rundown_id, group_id)

    async def stop_group(self, rundown_id, group_id):
        await self._command("stop_group", rundown_id, group_id)

    async def pause_group(self, rundown_id, group_id):
        await self._command("pause_group", rundown_id, group_id)

    async def is_timeline_obj_playing(self, rundown_id, obj_id):
        self.calls.append(("probe", rundown_id, obj_id))
        if rundown_id in self.probe_errors:
            raise self.probe_errors[rundown_id]
        return (rundown_id, obj_id) in self.playing

    def probes(self):
        return [c[1:] for c in self.calls if c[0] == "probe"]


class FakeSuperConductor:
    def __init__(self):
        self.rundowns = {}        # rundown id -> groups list
        self.playing = set()      # {(rundown_id, obj_id)}
        self.requests = []        # [(method, path_qs)]

    def app(self) -> web.Application:
        @web.middleware
        async def capture(request, handler):
            self.requests.append((request.method, request.path_qs))
            return await handler(request)

        app = web.Application(middlewares=[capture])
        app.router.add_get("/api/internal/rundowns", self._rundowns)
        app.router.add_get("/api/internal/rundown/", self._rundown)
        for command in ("playGroup", "stopGroup", "pauseGroup"):
            app.router.add_post(f"/api/internal/{command}/", self._command)
        app.router.add_post("/api/internal/isTimelineObjPlaying/", self._is_playing)
        app.router.add_get("/api/internal/echo", self._echo)
        return app

    async def _rundowns(self, request):
        return web.json_response({"rundownIds": list(self.rundowns)})

    async def _rundown(self, request):
        rundown_id = request.query.get("rundownId")
        if rundown_id not in self.rundowns:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response({"rundown": {"id": rundown_id, "groups": self.rundowns[rundown_id]}})

    async def _command(self, request):
        return web.Response(text="")

    async def _is_playing(self, request):
        key = (request.query.get("rundownId"), request.query.get("timelineObjId"))
        return web.json_response(key in self.playing)

    async def _echo(self, request):
        return web.Response(text=request.query.get("text", "plain text"))


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Never read a real config file during tests."""
    monkeypatch.delenv(config.ENV_CONFIG_PATH, raising=False)
    monkeypatch.setattr(config, "_SEARCH_PATHS", [])
    monkeypatch.setattr(config, "_config", None)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest_asyncio.fixture
async def superconductor():
    fake = FakeSuperConductor()
    server = TestServer(fake.app())
    await server.start_server()
    fake.port = server.port
    try:
        yield fake
    finally:
        await server.close()


async def wait_for(predicate, timeout=1.0):
    """Let spawned tasks run until *predicate* holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


