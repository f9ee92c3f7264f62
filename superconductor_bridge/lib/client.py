"""
HTTP client for the SuperConductor internal API.

SuperConductor API (JSON, base http://<host>:<port>/api/internal):
  GET  /rundowns                                     — {"rundownIds": [...]}
  GET  /rundown/?rundownId=R                         — {"rundown": {"groups": [...]}}
  POST /playGroup/?rundownId=R&groupId=G             — start a group
  POST /stopGroup/?rundownId=R&groupId=G             — stop a group
  POST /pauseGroup/?rundownId=R&groupId=G            — pause a group
  POST /isTimelineObjPlaying/?rundownId=R&timelineObjId=T  — true | false

Usage:
    client = RemoteClient("127.0.0.1", "5500")
    await client.start()
    ids = await client.list_rundowns()
    await client.close()
"""

import asyncio
import json
import logging
import urllib.parse

import aiohttp

from .errors import MalformedResponseError, TransportError

logger = logging.getLogger(__name__)

API_ROOT = "/api/internal"
DEFAULT_TIMEOUT = 5.0


class RemoteClient:
    """Thin request layer.  No retries: the next poll tick is the retry."""

    def __init__(self, host: str, port: str, timeout: float = DEFAULT_TIMEOUT):
        self.host = host
        self.port = port
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}{API_ROOT}"

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Content-Type": "application/json"},
            )
            logger.info("SuperConductor client ready -> %s", self.base_url)

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    async def request(self, path: str, method: str = "GET", body=None):
        """Send a request; return parsed JSON, or the raw text when it isn't JSON."""
        if self._session is None:
            await self.start()
        url = f"{self.base_url}{path}"
        kwargs = {}
        if body is not None and method != "GET":
            kwargs["data"] = json.dumps(body)
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                resp.raise_for_status()
                text = await resp.text()
        except asyncio.TimeoutError as e:
            logger.error("Request to %s timed out", url)
            raise TransportError(f"timeout on {method} {path}", e) from e
        except aiohttp.ClientError as e:
            logger.error("Error sending request to %s: %s", url, e)
            raise TransportError(f"{method} {path} failed: {e}", e) from e

        try:
            return json.loads(text)
        except ValueError:
            return text

    # ── Typed endpoints ──

    async def list_rundowns(self) -> list[str]:
        data = await self.request("/rundowns")
        ids = data.get("rundownIds") if isinstance(data, dict) else None
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise MalformedResponseError(f"unexpected /rundowns body: {data!r:.200}")
        return ids

    async def get_rundown_groups(self, rundown_id: str) -> list[dict]:
        data = await self.request(_path("/rundown/", rundownId=rundown_id))
        rundown = data.get("rundown") if isinstance(data, dict) else None
        groups = rundown.get("groups") if isinstance(rundown, dict) else None
        if not isinstance(groups, list):
            raise MalformedResponseError(f"no groups array for rundown {rundown_id}")
        return groups

    async def play_group(self, rundown_id: str, group_id: str):
        return await self.request(
            _path("/playGroup/", rundownId=rundown_id, groupId=group_id), "POST")

    async def stop_group(self, rundown_id: str, group_id: str):
        return await self.request(
            _path("/stopGroup/", rundownId=rundown_id, groupId=group_id), "POST")

    async def pause_group(self, rundown_id: str, group_id: str):
        return await self.request(
            _path("/pauseGroup/", rundownId=rundown_id, groupId=group_id), "POST")

    async def is_timeline_obj_playing(self, rundown_id: str, obj_id: str) -> bool:
        data = await self.request(
            _path("/isTimelineObjPlaying/", rundownId=rundown_id, timelineObjId=obj_id),
            "POST")
        # Anything but a JSON true counts as not playing
        return data is True


def _path(endpoint: str, **params) -> str:
    return f"{endpoint}?{urllib.parse.urlencode(params)}"
