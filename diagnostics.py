from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any
from urllib.parse import urlsplit

from gallery.errors import GalleryError, HostUnreachable, InvalidRequest, NoConnectivity
from supabase_client import SupabaseClient

Resolver = Callable[[str], Awaitable[list[str]]]


async def resolve_host(host: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, 443, type=socket.SOCK_STREAM)
    addresses: list[str] = []
    for info in infos:
        address = info[4][0]
        if address not in addresses:
            addresses.append(address)
    return addresses


@dataclass
class ReachabilityReport:
    host: str | None
    addresses: list[str] = field(default_factory=list)
    dns_ms: float | None = None
    http_status: int | None = None
    latency_ms: float | None = None
    error_kind: str | None = None
    error: str | None = None

    @property
    def reachable(self) -> bool:
        return self.http_status is not None

    def lines(self) -> list[str]:
        lines = [f"Host: {self.host or 'not configured'}"]
        if self.addresses:
            lines.append(f"DNS: ok ({', '.join(self.addresses)}, {self.dns_ms:.1f}ms)")
        elif self.dns_ms is None:
            lines.append("DNS: skipped")
        else:
            lines.append("DNS: could not resolve hostname")
        if self.http_status is not None:
            lines.append(f"HTTP: status {self.http_status} in {self.latency_ms:.1f}ms")
        else:
            lines.append(f"HTTP: unreachable ({self.error_kind}: {self.error})")
        return lines

    def as_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "reachable": self.reachable,
            "addresses": list(self.addresses),
            "dns_ms": self.dns_ms,
            "http_status": self.http_status,
            "latency_ms": self.latency_ms,
            "error_kind": self.error_kind,
            "error": self.error,
        }


async def check_server_reachability(
    client: SupabaseClient,
    *,
    resolver: Resolver = resolve_host,
) -> ReachabilityReport:
    """Resolve the backend host and probe its REST root.

    Any HTTP answer, including 401 or 404, proves the server is reachable.
    """

    host = urlsplit(client.api_base).hostname if client.api_base else None
    report = ReachabilityReport(host=host)
    if not client.enabled or not host:
        report.error_kind = InvalidRequest.__name__
        report.error = "Supabase client is not configured"
        logging.warning("DIAG skipped: %s", report.error)
        return report

    t0 = perf_counter()
    try:
        report.addresses = await resolver(host)
    except OSError as exc:
        report.dns_ms = (perf_counter() - t0) * 1000.0
        error: GalleryError
        if isinstance(exc, socket.gaierror) and exc.errno == getattr(socket, "EAI_AGAIN", None):
            error = NoConnectivity(str(exc))
        else:
            error = HostUnreachable(str(exc))
        report.error_kind = type(error).__name__
        report.error = str(error)
        logging.warning("DIAG dns failed host=%s error=%s", host, exc)
        return report
    report.dns_ms = (perf_counter() - t0) * 1000.0

    try:
        status, latency = await client.probe()
    except GalleryError as exc:
        report.error_kind = type(exc).__name__
        report.error = str(exc)
        logging.warning("DIAG http probe failed host=%s kind=%s", host, report.error_kind)
        return report
    report.http_status = status
    report.latency_ms = latency * 1000.0
    logging.info(
        "DIAG host=%s dns=ok(%.1fms) http=%s(%.1fms)",
        host,
        report.dns_ms,
        status,
        report.latency_ms,
    )
    return report
