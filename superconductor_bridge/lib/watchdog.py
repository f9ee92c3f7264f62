"""Systemd notify/watchdog support for the bridge service.

Messages go to the socket named by NOTIFY_SOCKET.  Without it (dev mode,
tests) every call is a no-op.

Usage:
    task = asyncio.create_task(watchdog_loop())
    ...
    task.cancel()
"""

import asyncio
import logging
import os
import socket

logger = logging.getLogger(__name__)


def sd_notify(msg: str) -> bool:
    """Send *msg* to the systemd notify socket. Returns False when unset."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
    finally:
        sock.close()
    return True


async def watchdog_loop(interval: int = 20):
    """READY=1 once, then WATCHDOG=1 every *interval* seconds until cancelled."""
    sd_notify("READY=1")
    logger.info("Watchdog started (interval=%ds)", interval)
    try:
        while True:
            sd_notify("WATCHDOG=1")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        sd_notify("STOPPING=1")
        raise
