# SuperConductor Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PanelHost — the control panel's side of the bridge.

Holds whatever the bridge publishes (actions, feedbacks, presets, status)
and the feedback instances the panel currently has active.  The HTTP routes
in bridge.py drive it on behalf of a remote panel; tests drive it directly.

Definition shapes:

    actions   = {"playGroup": {"name": ..., "options": [...],
                               "callback": async def (action: dict)}}
    feedbacks = {"isGroupPlaying": {"type": "boolean", "name": ...,
                                    "default_style": {...}, "options": [...],
                                    "callback": def (feedback: dict) -> bool,
                                    "subscribe": def (feedback: dict),
                                    "unsubscribe": def (feedback: dict)}}
    presets   = {"<selector>": {"type": "button", "category": ..., ...}}

where ``action`` / ``feedback`` are ``{"id": str, "options": dict}``.
"""

import asyncio
import logging

import aiohttp

log = logging.getLogger(__name__)

# Host status values
STATUS_OK = "ok"
STATUS_CONNECTING = "connecting"
STATUS_CONNECTION_FAILURE = "connection_failure"
STATUS_BAD_CONFIG = "bad_config"
STATUS_DISCONNECTED = "disconnected"

_CALLABLE_KEYS = ("callback", "subscribe", "unsubscribe")


def _public(definitions: dict) -> dict:
    """Strip callbacks so a definition set can be sent as JSON."""
    return {
        key: {k: v for k, v in d.items() if k not in _CALLABLE_KEYS}
        for key, d in definitions.items()
    }


class PanelHost:
    def __init__(self, webhook_url: str = ""):
        self.webhook_url = webhook_url
        self.actions: dict = {}
        self.feedbacks: dict = {}
        self.presets: dict = {}
        self.status = STATUS_CONNECTING
        self.status_message: str | None = None
        self.feedback_values: dict[str, bool] = {}
        self._instances: dict[str, dict] = {}   # instance id -> {"feedback_id", "options"}
        self._session: aiohttp.ClientSession | None = None
        self._push_tasks: set[asyncio.Task] = set()

    # ── Called by the bridge ──

    def set_action_definitions(self, actions: dict):
        self.actions = actions

    def set_feedback_definitions(self, feedbacks: dict):
        self.feedbacks = feedbacks

    def set_preset_definitions(self, presets: dict):
        self.presets = presets

    def update_status(self, status: str, message: str | None = None):
        if status != self.status or message != self.status_message:
            log.info("Status -> %s%s", status, f" ({message})" if message else "")
        self.status = status
        self.status_message = message

    def check_feedbacks_by_id(self, *instance_ids: str):
        """Re-evaluate feedback instances and push changed values."""
        for instance_id in instance_ids:
            if instance_id not in self._instances:
                continue
            value = self.evaluate_feedback(instance_id)
            previous = self.feedback_values.get(instance_id)
            self.feedback_values[instance_id] = value
            if value != previous and self.webhook_url:
                self._spawn_push({"type": "feedback", "id": instance_id, "value": value})

    # ── Called on behalf of the panel ──

    async def run_action(self, action_id: str, options: dict):
        definition = self.actions.get(action_id)
        if definition is None:
            raise KeyError(action_id)
        await definition["callback"]({"id": action_id, "options": options or {}})

    def activate_feedback(self, instance_id: str, feedback_id: str, options: dict):
        definition = self.feedbacks.get(feedback_id)
        if definition is None:
            raise KeyError(feedback_id)
        if instance_id in self._instances:
            self.deactivate_feedback(instance_id)
        self._instances[instance_id] = {"feedback_id": feedback_id, "options": options or {}}
        subscribe = definition.get("subscribe")
        if subscribe:
            subscribe({"id": instance_id, "options": options or {}})
        self.feedback_values[instance_id] = self.evaluate_feedback(instance_id)

    def deactivate_feedback(self, instance_id: str):
        instance = self._instances.pop(instance_id, None)
        self.feedback_values.pop(instance_id, None)
        if instance is None:
            raise KeyError(instance_id)
        definition = self.feedbacks.get(instance["feedback_id"]) or {}
        unsubscribe = definition.get("unsubscribe")
        if unsubscribe:
            unsubscribe({"id": instance_id, "options": instance["options"]})

    def evaluate_feedback(self, instance_id: str) -> bool:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise KeyError(instance_id)
        definition = self.feedbacks.get(instance["feedback_id"])
        if definition is None:
            return False
        return bool(definition["callback"]({"id": instance_id, "options": instance["options"]}))

    def has_instance(self, instance_id: str) -> bool:
        return instance_id in self._instances

    # ── Serialisation for the HTTP routes ──

    def public_actions(self) -> dict:
        return _public(self.actions)

    def public_feedbacks(self) -> dict:
        return _public(self.feedbacks)

    # ── Webhook push ──

    def _spawn_push(self, payload: dict):
        try:
            task = asyncio.get_running_loop().create_task(self._push(payload))
        except RuntimeError:
            return  # no loop (sync caller in tests)
        self._push_tasks.add(task)
        task.add_done_callback(self._push_tasks.discard)

    async def _push(self, payload: dict):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=2.0))
        try:
            async with self._session.post(self.webhook_url, json=payload) as resp:
                log.debug("→ panel: %s %s (HTTP %d)", payload["type"], payload["id"], resp.status)
        except Exception as e:
            log.warning("Failed to push %s to panel: %s", payload["type"], e)

    async def close(self):
        for task in list(self._push_tasks):
            task.cancel()
        if self._session:
            await self._session.close()
            self._session = None
