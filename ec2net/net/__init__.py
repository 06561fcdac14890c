# This file is part of ec2net. See LICENSE file for license information.
"""Queries and small mutations on live links, via iproute2."""
import ipaddress
import logging
import re
from typing import List

from ec2net import subp

LOG = logging.getLogger(__name__)

IPV4_LINK_LOCAL = ipaddress.ip_network("169.254.0.0/16")
_INET_RE = re.compile(r"\binet6?\s+(\S+)")
_ALTNAME_RE = re.compile(r"^\s*altname\s+(\S+)", re.MULTILINE)


def get_global_addresses(iface: str, family: int) -> List[str]:
    """Return global scope addresses (without prefix length) on iface."""
    if not iface:
        raise ValueError("Cannot list addresses without an interface")
    if family not in (4, 6):
        raise ValueError("Unknown address family {0}".format(family))
    out, _ = subp.subp(
        ["ip", "-{0}".format(family), "-o", "addr", "show", "dev", iface,
         "scope", "global"]
    )
    return [m.split("/")[0] for m in _INET_RE.findall(out)]


def subnet_supports_ipv4(iface: str) -> bool:
    """IPv4 is routable unless the link only got a 169.254/16 address.

    IPv6-only subnets hand out a link-local IPv4 address with global
    scope, which is what marks a subnet as lacking IPv4. A link that
    cannot be queried shows no such address.
    """
    try:
        addresses = get_global_addresses(iface, 4)
    except subp.ProcessExecutionError as e:
        LOG.debug("Unable to list IPv4 addresses of %s: %s", iface, e)
        return True
    return not any(
        ipaddress.ip_address(addr) in IPV4_LINK_LOCAL for addr in addresses
    )


def subnet_supports_ipv6(iface: str) -> bool:
    try:
        return bool(get_global_addresses(iface, 6))
    except subp.ProcessExecutionError as e:
        LOG.debug("Unable to list IPv6 addresses of %s: %s", iface, e)
        return False


def get_link_altnames(iface: str) -> List[str]:
    out, _ = subp.subp(["ip", "link", "show", "dev", iface])
    return _ALTNAME_RE.findall(out)


def add_link_altname(iface: str, altname: str):
    subp.subp(["ip", "link", "property", "add", "dev", iface,
               "altname", altname])
