"""
Readiness — probe the worker endpoint and make sure its port is released.

The worker counts as ready as soon as its HTTP server answers at all:
a 404 or 500 still proves the process is listening.
"""

from __future__ import annotations

import logging
import socket
import ssl
import sys
import time
import urllib.error
import urllib.request
from typing import Callable

from ttshub.adapters.base import CommandRunner
from ttshub.core.models.command import KillPid, ListPortPids
from ttshub.core.models.log import SERVICE_TAG

logger = logging.getLogger(__name__)

Probe = Callable[[str, float], bool]
PortCheck = Callable[[str, int], bool]


def _unverified_context() -> ssl.SSLContext:
    # Local workers serve self-signed certificates.
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def http_probe(url: str, timeout: float) -> bool:
    """Single GET against ``url``. True on any HTTP response.

    Certificates are not verified for ``https`` URLs: only "is something
    answering on the port" matters here.
    """
    req = urllib.request.Request(
        url,
        method="GET",
        headers={"User-Agent": "ttshub/1.0"},
    )
    try:
        context = _unverified_context() if url.startswith("https:") else None
        with urllib.request.urlopen(req, timeout=timeout, context=context):
            return True
    except urllib.error.HTTPError:
        return True
    except (urllib.error.URLError, OSError) as e:
        logger.debug("Probe %s failed: %s", url, e)
        return False


def port_is_reachable(host: str, port: int, timeout: float = 0.2) -> bool:
    """Whether something accepts TCP connections on ``host:port``."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def _parse_pids(lines: list[str]) -> list[int]:
    pids: list[int] = []
    for line in lines:
        for token in line.split():
            # PID 0 is the Windows idle process owning TIME_WAIT sockets.
            if token.isdigit() and int(token) > 0 and int(token) not in pids:
                pids.append(int(token))
    return pids


def ensure_port_closed(
    runner: CommandRunner,
    port: int,
    *,
    host: str = "127.0.0.1",
    attempts: int = 5,
    delay: float = 0.3,
    is_open: PortCheck = port_is_reachable,
    sleep: Callable[[float], None] = time.sleep,
    platform: str = sys.platform,
) -> bool:
    """Kill whatever still listens on ``port``.

    Lists listener PIDs (``lsof``, or PowerShell on Windows) and force
    kills each one (``kill -9`` or ``taskkill /F``), re-checking up to
    ``attempts`` times.  Returns True once the port no longer accepts
    connections.
    """
    windows = platform.startswith("win")
    for attempt in range(1, attempts + 1):
        if not is_open(host, port):
            return True

        listed = runner.run(ListPortPids(port=port, windows=windows), source_tag=SERVICE_TAG)
        pids = _parse_pids(listed.stdout_tail) if listed.success else []
        logger.info(
            "Port %d still open (attempt %d/%d), listeners: %s",
            port, attempt, attempts, pids or "unknown",
        )
        for pid in pids:
            runner.run(KillPid(pid=pid, windows=windows), source_tag=SERVICE_TAG)
        sleep(delay)

    closed = not is_open(host, port)
    if not closed:
        logger.warning("Port %d still served after %d attempts", port, attempts)
    return closed
