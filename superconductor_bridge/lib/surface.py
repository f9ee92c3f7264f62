# SuperConductor Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SurfaceBuilder — turns the mirror's group list into panel definitions.

Called on every structural refresh.  Everything is regenerated from the
combined group list; nothing is patched in place, so the panel always shows
exactly what the mirror holds.

Published on the PanelHost:
    actions    playGroup / stopGroup / pauseGroup  (option: groupId)
    feedbacks  isGroupPlaying                      (option: groupId)
    presets    one button per group: press 1 plays, press 2 stops
"""

import logging
from typing import Callable

from .client import RemoteClient
from .errors import IdentifierError, SelectorError, TransportError
from .identifiers import decompose, display_rundown_name
from .mirror import RundownMirror
from .panel import STATUS_CONNECTION_FAILURE, PanelHost
from .subscriptions import SubscriptionRegistry

log = logging.getLogger(__name__)


def rgb_to_decimal(r: int, g: int, b: int) -> int:
    return (r << 16) | (g << 8) | b


ACTIVE_BGCOLOR = rgb_to_decimal(0, 180, 0)
ACTIVE_COLOR = rgb_to_decimal(0, 0, 0)
PRESET_COLOR = rgb_to_decimal(255, 255, 255)
PRESET_BGCOLOR = rgb_to_decimal(0, 0, 0)

# action id -> (display name, RemoteClient method name)
GROUP_COMMANDS = {
    "playGroup": ("Play Group", "play_group"),
    "stopGroup": ("Stop Group", "stop_group"),
    "pauseGroup": ("Pause Group", "pause_group"),
}


def _selector(options: dict) -> str:
    selector = (options or {}).get("groupId")
    if not selector:
        raise SelectorError("no group selected")
    return selector


class SurfaceBuilder:
    def __init__(self, host: PanelHost, client: RemoteClient, mirror: RundownMirror,
                 registry: SubscriptionRegistry, request_tick: Callable[[], None]):
        self._host = host
        self._client = client
        self._mirror = mirror
        self._registry = registry
        self._request_tick = request_tick

    def rebuild(self, groups: list[dict]):
        self._host.set_action_definitions(self.build_actions(groups))
        self._host.set_feedback_definitions(self.build_feedbacks(groups))
        self._host.set_preset_definitions(self.build_presets(groups))
        log.info("Surface rebuilt for %d groups", len(groups))

    # ── Actions ──

    def _group_option(self, groups: list[dict]) -> dict:
        return {
            "type": "dropdown",
            "label": "Group",
            "id": "groupId",
            "choices": [{"id": g["id"], "label": g["label"]} for g in groups],
            "required": True,
        }

    def build_actions(self, groups: list[dict]) -> dict:
        actions = {}
        for action_id, (name, method) in GROUP_COMMANDS.items():
            actions[action_id] = {
                "name": name,
                "options": [self._group_option(groups)],
                "callback": self._make_command(action_id, method),
            }
        return actions

    def _make_command(self, action_id: str, method: str):
        async def callback(action: dict):
            try:
                rundown_id, group_id = decompose(_selector(action.get("options")))
                await getattr(self._client, method)(rundown_id, group_id)
                log.info("%s: %s / %s", action_id, rundown_id, group_id)
            except SelectorError:
                log.debug("%s invoked without a group", action_id)
            except IdentifierError as e:
                log.warning("%s: %s", action_id, e)
            except TransportError as e:
                log.error("%s action failed: %s", action_id, e)
                self._host.update_status(STATUS_CONNECTION_FAILURE, str(e))
        return callback

    # ── Feedbacks ──

    def build_feedbacks(self, groups: list[dict]) -> dict:
        return {
            "isGroupPlaying": {
                "type": "boolean",
                "name": "Check if group is playing",
                "default_style": {
                    "bgcolor": ACTIVE_BGCOLOR,
                    "color": ACTIVE_COLOR,
                },
                "options": [self._group_option(groups)],
                "callback": self._is_group_playing,
                "subscribe": self._subscribe,
                "unsubscribe": self._unsubscribe,
            },
        }

    def _is_group_playing(self, feedback: dict) -> bool:
        """Cached flag only — evaluation never touches the network."""
        try:
            rundown_id, group_id = decompose(_selector(feedback.get("options")))
        except SelectorError:
            log.debug("No group selected for isGroupPlaying feedback %s", feedback.get("id"))
            return False
        except IdentifierError as e:
            log.debug("isGroupPlaying feedback %s: %s", feedback.get("id"), e)
            return False
        return self._mirror.is_playing(rundown_id, group_id)

    def _subscribe(self, feedback: dict):
        try:
            selector = _selector(feedback.get("options"))
        except SelectorError:
            log.debug("No group selected for isGroupPlaying feedback %s", feedback.get("id"))
            return
        self._registry.subscribe(selector, feedback["id"])
        self._request_tick()

    def _unsubscribe(self, feedback: dict):
        self._registry.unsubscribe(feedback["id"])
        self._request_tick()

    # ── Presets ──

    def build_presets(self, groups: list[dict]) -> dict:
        presets = {}
        for group in groups:
            selector = group["id"]
            presets[selector] = {
                "type": "button",
                "category": display_rundown_name(group["rundown_id"]),
                "name": group["group_name"],
                "style": {
                    "text": group["group_name"],
                    "size": "auto",
                    "color": PRESET_COLOR,
                    "bgcolor": PRESET_BGCOLOR,
                },
                "steps": [
                    {"down": [{"actionId": "playGroup", "options": {"groupId": selector}}],
                     "up": []},
                    {"down": [{"actionId": "stopGroup", "options": {"groupId": selector}}],
                     "up": []},
                ],
                "feedbacks": [
                    {
                        "feedbackId": "isGroupPlaying",
                        "options": {"groupId": selector},
                        "style": {"color": ACTIVE_COLOR, "bgcolor": ACTIVE_BGCOLOR},
                    },
                ],
            }
        return presets
