"""LAN address discovery for the server's startup banner."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Optional

import psutil

logger = logging.getLogger("codesync.netinfo")

# Docker, VirtualBox, libvirt bridges and VPN tunnels are not reachable from the LAN
VIRTUAL_PREFIXES = ("docker", "br-", "veth", "virbr", "vboxnet", "tun", "tap", "ppp", "wg")


def detect_lan_ip() -> Optional[str]:
    """Return the first IPv4 address a LAN peer could connect to.

    Skips interfaces that are down, loopback, point-to-point, or whose
    name marks them as virtual.

    Returns:
        Optional[str]: Dotted-quad address, or None if none qualifies.
    """
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (OSError, psutil.Error) as exc:
        logger.warning("Cannot enumerate network interfaces: %s", exc)
        return None

    for name in sorted(addrs):
        if name.startswith(VIRTUAL_PREFIXES):
            continue
        iface = stats.get(name)
        if iface is None or not iface.isup:
            continue
        for addr in addrs[name]:
            if addr.family != socket.AF_INET or addr.ptp:
                continue
            if ipaddress.ip_address(addr.address).is_loopback:
                continue
            logger.debug("LAN address %s on %s", addr.address, name)
            return addr.address

    return None
