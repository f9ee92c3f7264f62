# SuperConductor Bridge
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
SubscriptionRegistry — which panel queries are watching which groups.

The panel activates an ``isGroupPlaying`` query per button.  Several buttons
may watch the same group; the registry collapses them so every tick probes
each watched group once and then re-evaluates every query bound to it.
Groups nobody watches are never probed.
"""

import asyncio
import logging
from typing import Callable

from .errors import IdentifierError, TransportError
from .identifiers import decompose
from .prober import PlaybackProber

log = logging.getLogger(__name__)


class SubscriptionEntry:
    def __init__(self, group_id: str, query_id: str):
        self.group_id = group_id      # composed selector
        self.query_id = query_id      # panel query instance

    def to_dict(self) -> dict:
        return {"group_id": self.group_id, "query_id": self.query_id}


class SubscriptionRegistry:
    def __init__(self, prober: PlaybackProber,
                 notify: Callable[[str], None],
                 on_status: Callable[[str, str | None], None] | None = None):
        self._prober = prober
        self._notify = notify
        self._on_status = on_status
        self._entries: list[SubscriptionEntry] = []

    @property
    def entries(self) -> list[SubscriptionEntry]:
        return list(self._entries)

    def subscribe(self, group_id: str, query_id: str):
        """Register interest. Probing waits for the next tick."""
        self._entries.append(SubscriptionEntry(group_id, query_id))
        log.debug("Subscribed query %s to group %s", query_id, group_id)

    def unsubscribe(self, query_id: str):
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.query_id != query_id]
        log.debug("Unsubscribed query %s (%d entries removed)",
                  query_id, before - len(self._entries))

    def active_groups(self) -> list[str]:
        """Distinct watched selectors, in first-subscribed order."""
        return list(dict.fromkeys(e.group_id for e in self._entries))

    def query_ids_for(self, group_id: str) -> list[str]:
        return [e.query_id for e in self._entries if e.group_id == group_id]

    async def tick(self):
        """Probe every watched group once and re-evaluate its queries."""
        group_ids = self.active_groups()
        if not group_ids:
            return
        log.debug("Subscribed groups: %s", group_ids)
        await asyncio.gather(*(self._tick_group(g) for g in group_ids))

    async def _tick_group(self, group_id: str):
        try:
            rundown_id, local_id = decompose(group_id)
            await self._prober.probe(rundown_id, local_id)
        except IdentifierError as e:
            log.warning("Cannot probe %s: %s", group_id, e)
            return
        except TransportError as e:
            log.error("Probe failed for group %s: %s", group_id, e)
            if self._on_status:
                self._on_status("connection_failure", str(e))
            return
        except Exception:
            log.exception("Unexpected error probing group %s", group_id)
            return

        for query_id in self.query_ids_for(group_id):
            self._notify(query_id)
