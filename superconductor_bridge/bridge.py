#!/usr/bin/env python3
# SuperConductor Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SuperConductor Bridge (superconductor-bridge)

Mirrors SuperConductor rundowns onto a control panel.  Two pollers run side
by side:

  rundown poller  every rundownPollIntervalSeconds — refresh rundowns/groups,
                  rebuild actions, feedbacks and presets
  group poller    every groupPollIntervalSeconds  — probe only the groups an
                  active isGroupPlaying feedback is watching

Each tick is spawned as its own task, so a slow refresh never delays the
timer and two refreshes may overlap; the mirror keeps whichever finished
last.

HTTP API for the panel (port 8780):
  GET  /status                 host status, rundowns, watched groups
  GET  /config/fields          connection form definition
  POST /config                 apply new connection settings
  GET  /groups                 combined groups with cached playing flag
  GET  /actions /feedbacks /presets
  POST /action                 {"action": "playGroup", "options": {"groupId": ...}}
  POST /feedback/subscribe     {"id": ..., "feedback": "isGroupPlaying", "options": {...}}
  POST /feedback/unsubscribe   {"id": ...}
  GET  /feedback/{id}          current value of a feedback instance
  POST /refresh                structural refresh right now
"""

import asyncio
import json
import logging

from aiohttp import web

from .lib.client import DEFAULT_TIMEOUT, RemoteClient
from .lib.config import CONFIG_FIELDS, cfg, validate_config
from .lib.errors import ConfigError, IdentifierError
from .lib.identifiers import decompose
from .lib.mirror import RundownMirror
from .lib.panel import (STATUS_BAD_CONFIG, STATUS_CONNECTING,
                        STATUS_DISCONNECTED, PanelHost)
from .lib.prober import PlaybackProber
from .lib.subscriptions import SubscriptionRegistry
from .lib.surface import SurfaceBuilder
from .lib.watchdog import watchdog_loop

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("superconductor-bridge")

BRIDGE_PORT = 8780
SHUTDOWN_GRACE = 2.0   # seconds to let in-flight ticks finish on stop


class SuperConductorBridge:
    """Owns the mirror, the subscription registry and both pollers."""

    def __init__(self, connection: dict | None = None, webhook_url: str | None = None,
                 request_timeout: float | None = None):
        if connection is None:
            connection = cfg("superconductor", default={})
        self._config_error: str | None = None
        try:
            self.config = validate_config(connection)
        except ConfigError as e:
            logger.error("Invalid connection settings: %s", e)
            self._config_error = str(e)
            self.config = validate_config({})

        if webhook_url is None:
            webhook_url = cfg("panel", "webhook_url", default="")
        if request_timeout is None:
            request_timeout = float(cfg("bridge", "request_timeout", default=DEFAULT_TIMEOUT))

        self.host = PanelHost(webhook_url=webhook_url)
        self.client = RemoteClient(self.config["host"], self.config["port"],
                                   timeout=request_timeout)
        self.mirror = RundownMirror(self.client, on_structure=self._on_structure,
                                    on_status=self._on_status)
        self.prober = PlaybackProber(self.mirror, self.client)
        self.registry = SubscriptionRegistry(self.prober, notify=self._notify,
                                             on_status=self._on_status)
        self.surface = SurfaceBuilder(self.host, self.client, self.mirror,
                                      self.registry, request_tick=self.request_tick)

        self.running = False
        self._rundown_poller: asyncio.Task | None = None
        self._group_poller: asyncio.Task | None = None
        self._watchdog: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    # ── Lifecycle ──

    async def start(self):
        """First refresh, publish the surface, start both pollers."""
        self.running = True
        self.host.update_status(STATUS_CONNECTING)
        await self.client.start()
        if self._config_error:
            self.host.update_status(STATUS_BAD_CONFIG, self._config_error)
            self.surface.rebuild([])
            return
        if not await self.mirror.refresh_structure():
            # Still publish (empty or previous) definitions so the panel has them
            self.surface.rebuild(self.mirror.groups)
        self._start_pollers()

    async def stop(self):
        """Cancel pollers, discard late results, close sessions."""
        self.running = False
        await self._cancel_pollers()
        self.mirror.close()
        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=SHUTDOWN_GRACE)
            for task in pending:
                task.cancel()
        await self.client.close()
        await self.host.close()
        self.host.update_status(STATUS_DISCONNECTED)
        logger.info("Bridge stopped")

    async def config_updated(self, connection: dict) -> dict:
        """Apply new connection settings: restart pollers and refresh."""
        config = validate_config(connection, require_connection=True)
        await self._cancel_pollers()
        self._config_error = None
        self.config = config
        self.client.host = config["host"]
        self.client.port = config["port"]
        logger.info("Config updated: %s:%s (rundowns every %ds, groups every %ds)",
                    config["host"], config["port"],
                    config["rundownPollIntervalSeconds"], config["groupPollIntervalSeconds"])
        self._start_pollers()
        if not await self.mirror.refresh_structure():
            self.surface.rebuild(self.mirror.groups)
        return config

    # ── Pollers ──

    def _start_pollers(self):
        self._rundown_poller = asyncio.create_task(self._poll_loop(
            self.config["rundownPollIntervalSeconds"], self.refresh, "rundown refresh"))
        self._group_poller = asyncio.create_task(self._poll_loop(
            self.config["groupPollIntervalSeconds"], self.registry.tick, "subscription tick"))

    async def _cancel_pollers(self):
        for task in (self._rundown_poller, self._group_poller):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._rundown_poller = None
        self._group_poller = None

    async def _poll_loop(self, interval: int, work, name: str):
        logger.info("Starting %s every %ds", name, interval)
        while True:
            await asyncio.sleep(interval)
            self._spawn(work(), name)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(coro, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro, name: str):
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s failed", name)

    async def refresh(self):
        await self.mirror.refresh_structure()

    def request_tick(self):
        """Probe watched groups now instead of waiting for the group poller."""
        if self.running:
            self._spawn(self.registry.tick(), "subscription tick")

    # ── Component callbacks ──

    def _on_structure(self, groups: list[dict]):
        if self.running:
            self.surface.rebuild(groups)

    def _on_status(self, status: str, message: str | None):
        if self.running:
            self.host.update_status(status, message)

    def _notify(self, query_id: str):
        if self.running:
            self.host.check_feedbacks_by_id(query_id)

    # ── Views ──

    def groups_with_state(self) -> list[dict]:
        result = []
        for group in self.mirror.groups:
            try:
                rundown_id, group_id = decompose(group["id"])
            except IdentifierError:
                continue
            local = self.mirror.get_group(rundown_id, group_id)
            result.append({
                "id": group["id"],
                "label": group["label"],
                "playing": local.playing if local else None,
            })
        return result

    def get_status(self) -> dict:
        status = {
            "status": self.host.status,
            "message": self.host.status_message,
            "subscriptions": self.registry.active_groups(),
            "config": self.config,
        }
        status.update(self.mirror.summary())
        return status

    # ── HTTP routes ──

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_status())

    async def _handle_config_fields(self, request: web.Request) -> web.Response:
        return web.json_response(CONFIG_FIELDS)

    async def _handle_config(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        if not isinstance(data, dict):
            return web.json_response({"error": "invalid json"}, status=400)
        try:
            config = await self.config_updated(data)
        except ConfigError as e:
            # The previous settings stay active, and so does their status
            logger.warning("Rejected connection settings: %s", e)
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response({"status": "ok", "config": config})

    async def _handle_groups(self, request: web.Request) -> web.Response:
        return web.json_response(self.groups_with_state())

    async def _handle_actions(self, request: web.Request) -> web.Response:
        return web.json_response(self.host.public_actions())

    async def _handle_feedbacks(self, request: web.Request) -> web.Response:
        return web.json_response(self.host.public_feedbacks())

    async def _handle_presets(self, request: web.Request) -> web.Response:
        return web.json_response(self.host.presets)

    async def _handle_action(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        action = data.get("action") if isinstance(data, dict) else None
        if not action:
            return web.json_response({"error": "missing 'action'"}, status=400)
        try:
            await self.host.run_action(action, data.get("options") or {})
        except KeyError:
            return web.json_response({"error": f"unknown action: {action}"}, status=404)
        except Exception as e:
            logger.exception("Action error")
            return web.json_response({"status": "error", "message": str(e)}, status=500)
        return web.json_response({"status": "ok", "action": action})

    async def _handle_subscribe(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        if not isinstance(data, dict) or not data.get("id") or not data.get("feedback"):
            return web.json_response({"error": "missing 'id' or 'feedback'"}, status=400)
        instance_id = str(data["id"])
        try:
            self.host.activate_feedback(instance_id, data["feedback"], data.get("options") or {})
        except KeyError:
            return web.json_response(
                {"error": f"unknown feedback: {data['feedback']}"}, status=404)
        return web.json_response({
            "status": "ok", "id": instance_id,
            "value": self.host.feedback_values.get(instance_id, False),
        })

    async def _handle_unsubscribe(self, request: web.Request) -> web.Response:
        data = await _read_json(request)
        if not isinstance(data, dict) or not data.get("id"):
            return web.json_response({"error": "missing 'id'"}, status=400)
        instance_id = str(data["id"])
        try:
            self.host.deactivate_feedback(instance_id)
        except KeyError:
            return web.json_response(
                {"error": f"unknown feedback instance: {instance_id}"}, status=404)
        return web.json_response({"status": "ok", "id": instance_id})

    async def _handle_feedback_value(self, request: web.Request) -> web.Response:
        instance_id = request.match_info["id"]
        if not self.host.has_instance(instance_id):
            return web.json_response(
                {"error": f"unknown feedback instance: {instance_id}"}, status=404)
        return web.json_response({"id": instance_id,
                                  "value": self.host.evaluate_feedback(instance_id)})

    async def _handle_refresh(self, request: web.Request) -> web.Response:
        await self.refresh()
        return web.json_response(self.get_status())

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[cors_middleware])
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/config/fields", self._handle_config_fields)
        app.router.add_post("/config", self._handle_config)
        app.router.add_get("/groups", self._handle_groups)
        app.router.add_get("/actions", self._handle_actions)
        app.router.add_get("/feedbacks", self._handle_feedbacks)
        app.router.add_get("/presets", self._handle_presets)
        app.router.add_post("/action", self._handle_action)
        app.router.add_post("/feedback/subscribe", self._handle_subscribe)
        app.router.add_post("/feedback/unsubscribe", self._handle_unsubscribe)
        app.router.add_get("/feedback/{id}", self._handle_feedback_value)
        app.router.add_post("/refresh", self._handle_refresh)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application):
        await self.start()
        self._watchdog = asyncio.create_task(watchdog_loop())

    async def _on_cleanup(self, app: web.Application):
        if self._watchdog:
            self._watchdog.cancel()
            try:
                await self._watchdog
            except asyncio.CancelledError:
                pass
            self._watchdog = None
        await self.stop()


async def _read_json(request: web.Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        resp = web.Response()
    else:
        resp = await handler(request)
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return resp


def main():
    bridge = SuperConductorBridge()
    port = int(cfg("bridge", "port", default=BRIDGE_PORT))
    web.run_app(bridge.create_app(), host="0.0.0.0", port=port,
                print=lambda msg: logger.info(msg))


if __name__ == "__main__":
    main()
