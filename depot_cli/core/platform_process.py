"""
Detection of a running Steam client, which locks the account DepotDownloader
needs to log into.
"""

import asyncio
import logging

import psutil

log = logging.getLogger(__name__)

STEAM_PROCESS_NAMES = frozenset({"steam.exe", "steam", "steam.sh", "steamwebhelper"})


def _scan_processes() -> bool:
    for proc in psutil.process_iter(["name"]):
        try:
            name = (proc.info.get("name") or "").lower()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if name in STEAM_PROCESS_NAMES:
            log.debug(f"Found Steam process: {name} (pid {proc.pid})")
            return True
    return False


async def steam_client_running() -> bool:
    """True if any Steam client process is alive. Scans in a worker thread."""
    try:
        return await asyncio.to_thread(_scan_processes)
    except psutil.Error as e:
        log.warning(f"[yellow]Could not inspect running processes: {e}[/yellow]")
        return False
