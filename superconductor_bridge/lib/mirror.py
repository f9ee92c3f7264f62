# SuperConductor Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
RundownMirror — local copy of SuperConductor's rundowns and groups.

Every structural refresh replaces the whole model: groups are rebuilt from
scratch, so their playing flag goes back to "unknown" (None) until the next
probe.  Rundowns are fetched concurrently, but the new model is swapped in
with a single assignment once every fetch has finished, so listeners never
see a half-updated mirror.

Overlapping refreshes are allowed; the mirror ends up matching whichever
refresh *completed* last.
"""

import asyncio
import logging
from typing import Callable

from .client import RemoteClient
from .errors import IdentifierError, MalformedResponseError, TransportError
from .identifiers import (check_group_id, check_rundown_id, compose,
                          display_rundown_name)

log = logging.getLogger(__name__)


class Group:
    """A playable group inside one rundown."""

    def __init__(self, id: str, name: str, timelines: list[str]):
        self.id = id
        self.name = name
        self.timelines = timelines     # timeline object ids, in rundown order
        self.playing: bool | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "Group":
        """Build a Group from one entry of ``rundown.groups``."""
        if not isinstance(payload, dict) or not isinstance(payload.get("id"), str):
            raise MalformedResponseError(f"group without id: {payload!r:.100}")
        parts = payload.get("parts") or []
        if not isinstance(parts, list):
            raise MalformedResponseError(f"group {payload['id']}: parts is not a list")
        timelines = []
        for part in parts:
            if not isinstance(part, dict):
                continue
            timeline = part.get("timeline") or []
            if not isinstance(timeline, list):
                raise MalformedResponseError(f"group {payload['id']}: timeline is not a list")
            for entry in timeline:
                obj = entry.get("obj") if isinstance(entry, dict) else None
                obj_id = obj.get("id") if isinstance(obj, dict) else None
                if obj_id:
                    timelines.append(obj_id)
        name = payload.get("name")
        return cls(payload["id"], name if isinstance(name, str) else payload["id"], timelines)


class RundownMirror:
    """Owns the rundown id list and the groups of every rundown."""

    def __init__(self, client: RemoteClient,
                 on_structure: Callable[[list[dict]], None] | None = None,
                 on_status: Callable[[str, str | None], None] | None = None):
        self._client = client
        self._on_structure = on_structure
        self._on_status = on_status
        self.rundown_ids: list[str] = []
        self._rundowns: dict[str, list[Group]] = {}
        self.groups: list[dict] = []   # combined list, one entry per selector
        self._closed = False

    # ── Structural refresh ──

    async def refresh_structure(self) -> bool:
        """Re-fetch every rundown. Returns False if the rundown list failed."""
        if self._closed:
            return False
        try:
            rundown_ids = await self._client.list_rundowns()
        except TransportError as e:
            if self._closed:
                return False
            log.error("Error fetching rundowns: %s", e)
            self._report("connection_failure", str(e))
            self.rundown_ids = []
            return False
        except MalformedResponseError as e:
            log.warning("Rundown list unreadable, treating as empty: %s", e)
            rundown_ids = []

        if self._closed:
            return False
        self._report("ok", None)

        valid_ids = []
        for rundown_id in rundown_ids:
            try:
                check_rundown_id(rundown_id)
            except IdentifierError as e:
                log.warning("Skipping rundown: %s", e)
                continue
            valid_ids.append(rundown_id)

        if not valid_ids:
            log.warning("No rundowns found.")
            self.rundown_ids = []
            self._rundowns = {}
            self._publish()
            return True

        results = await asyncio.gather(*(self._fetch_groups(r) for r in valid_ids))
        if self._closed:
            log.debug("Mirror closed during refresh, discarding results")
            return False

        self.rundown_ids = valid_ids
        self._rundowns = dict(zip(valid_ids, results))
        self._publish()
        return True

    async def _fetch_groups(self, rundown_id: str) -> list[Group]:
        try:
            payloads = await self._client.get_rundown_groups(rundown_id)
        except TransportError as e:
            log.error("Error fetching groups for rundown %s: %s", rundown_id, e)
            if not self._closed:
                self._report("connection_failure", str(e))
            return []
        except MalformedResponseError as e:
            log.warning("No groups found for rundown ID %s (%s)", rundown_id, e)
            return []

        groups = []
        for payload in payloads:
            try:
                group = Group.from_payload(payload)
                check_group_id(group.id)
            except (MalformedResponseError, IdentifierError) as e:
                log.warning("Skipping group in rundown %s: %s", rundown_id, e)
                continue
            groups.append(group)
        log.debug("Fetched groups for rundown ID %s: %d items", rundown_id, len(groups))
        return groups

    def _publish(self):
        self.groups = self._combine()
        if self._on_structure:
            self._on_structure(self.groups)

    def _combine(self) -> list[dict]:
        combined = []
        for rundown_id in self.rundown_ids:
            rundown_name = display_rundown_name(rundown_id)
            for group in self._rundowns.get(rundown_id, []):
                try:
                    selector = compose(rundown_id, group.id)
                except IdentifierError as e:
                    log.warning("Skipping group: %s", e)
                    continue
                combined.append({
                    "id": selector,
                    "label": f"{rundown_name}/{group.name}",
                    "group_name": group.name,
                    "rundown_id": rundown_id,
                })
        return combined

    def _report(self, status: str, message: str | None):
        if self._on_status:
            self._on_status(status, message)

    # ── Lookups ──

    def get_group(self, rundown_id: str, group_id: str) -> Group | None:
        for group in self._rundowns.get(rundown_id, []):
            if group.id == group_id:
                return group
        return None

    def has_rundown(self, rundown_id: str) -> bool:
        return rundown_id in self._rundowns

    def is_playing(self, rundown_id: str, group_id: str) -> bool:
        """Cached playing flag; unknown counts as not playing."""
        group = self.get_group(rundown_id, group_id)
        return bool(group and group.playing)

    def set_playing(self, rundown_id: str, group_id: str, playing: bool):
        if self._closed:
            return
        group = self.get_group(rundown_id, group_id)
        if group is not None:
            group.playing = playing

    def summary(self) -> dict:
        return {
            "rundowns": list(self.rundown_ids),
            "group_count": len(self.groups),
        }

    def close(self):
        """Stop accepting results; in-flight refreshes are discarded."""
        self._closed = True
