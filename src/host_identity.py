"""Resolve the declared host identity into the value sent with every request.

Apollo selects gray release cohorts by the `ip` query parameter of config
requests. The identity is resolved once at startup and shared read-only by
every watch loop.
"""

import ipaddress
import logging
import socket
from dataclasses import dataclass

import psutil

from src.settings import Custom, HostCidr, HostIdentity, HostName

logger = logging.getLogger(__name__)


class InvalidHostSpecError(Exception):
    """Exception raised when the host identity cannot be resolved."""


@dataclass(frozen=True)
class HostNameTarget:
    """Use this machine's hostname."""

    def ip_param(self) -> str | None:
        return socket.gethostname()


@dataclass(frozen=True)
class CidrTarget:
    """Use the first local address found inside `network`."""

    network: ipaddress.IPv4Network | ipaddress.IPv6Network

    def ip_param(self) -> str | None:
        for interface, addresses in psutil.net_if_addrs().items():
            for address in addresses:
                if address.family not in (socket.AF_INET, socket.AF_INET6):
                    continue
                try:
                    # strip IPv6 zone index, e.g. fe80::1%eth0
                    ip = ipaddress.ip_address(address.address.split("%", 1)[0])
                except ValueError:
                    continue
                if ip in self.network:
                    logger.debug(
                        "Using address %s of interface %s for %s",
                        ip,
                        interface,
                        self.network,
                    )
                    return str(ip)
        logger.warning("No local address found in %s", self.network)
        return None


@dataclass(frozen=True)
class CustomTarget:
    """Use an opaque label as is."""

    value: str

    def ip_param(self) -> str | None:
        return self.value


TargetingValue = HostNameTarget | CidrTarget | CustomTarget


def resolve_host_identity(host: HostIdentity | None) -> TargetingValue | None:
    """Resolve the declared host identity into a targeting value.

    Args:
        host: Host identity from the settings, or None when not configured.

    Returns:
        The targeting value, or None when no host identity is configured.

    Raises:
        InvalidHostSpecError: If a CIDR host identity is not a valid CIDR.
    """
    if host is None:
        return None
    if isinstance(host, HostName):
        return HostNameTarget()
    if isinstance(host, HostCidr):
        try:
            return CidrTarget(ipaddress.ip_network(host.cidr, strict=False))
        except ValueError as e:
            raise InvalidHostSpecError(
                f"Invalid host cidr '{host.cidr}': {e}"
            ) from e
    if isinstance(host, Custom):
        return CustomTarget(host.custom)
    raise InvalidHostSpecError(f"Unsupported host identity: {host!r}")
