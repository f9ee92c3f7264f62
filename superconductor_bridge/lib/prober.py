"""Playback-state probing for a single group."""

import logging

from .client import RemoteClient
from .mirror import RundownMirror

log = logging.getLogger(__name__)


class PlaybackProber:
    """Asks SuperConductor whether a group is playing.

    A group counts as playing as soon as one of its timeline objects does,
    so objects are queried in order and the scan stops at the first hit.
    The result is cached on the mirror for feedback evaluation.
    """

    def __init__(self, mirror: RundownMirror, client: RemoteClient):
        self._mirror = mirror
        self._client = client

    async def probe(self, rundown_id: str, group_id: str) -> bool:
        if not self._mirror.has_rundown(rundown_id):
            log.debug("No rundown found for ID %s", rundown_id)
            return False
        group = self._mirror.get_group(rundown_id, group_id)
        if group is None:
            log.debug("No group %s in rundown %s", group_id, rundown_id)
            return False

        for obj_id in list(group.timelines):
            if await self._client.is_timeline_obj_playing(rundown_id, obj_id):
                self._mirror.set_playing(rundown_id, group_id, True)
                log.debug("Timeline object %s in group %s (%s) is playing",
                          obj_id, group_id, rundown_id)
                return True

        self._mirror.set_playing(rundown_id, group_id, False)
        log.debug("Group %s in rundown %s is not playing", group_id, rundown_id)
        return False
