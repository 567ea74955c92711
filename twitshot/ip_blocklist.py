from __future__ import annotations

import ipaddress
from typing import Iterable, Union

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

# Private, loopback, link-local, documentation, multicast and otherwise
# reserved ranges. Raw screenshots must never reach any of these.
BLOCKED_SUBNETS = (
    "0.0.0.0/8",
    "10.0.0.0/8",
    "100.64.0.0/10",
    "127.0.0.0/8",
    "169.254.0.0/16",
    "172.16.0.0/12",
    "192.0.0.0/24",
    "192.0.2.0/24",
    "192.88.99.0/24",
    "192.168.0.0/16",
    "198.18.0.0/15",
    "198.51.100.0/24",
    "203.0.113.0/24",
    "224.0.0.0/4",
    "233.252.0.0/24",
    "240.0.0.0/4",
    "255.255.255.255/32",
    "::/128",
    "::1/128",
    "::ffff:0:0/96",
    "::ffff:0:0:0/96",
    "64:ff9b::/96",
    "64:ff9b:1::/48",
    "100::/64",
    "2001::/32",
    "2001:20::/28",
    "2001:db8::/32",
    "2002::/16",
    "fc00::/7",
    "fe80::/10",
    "ff00::/8",
)


class IpBlockList:
    def __init__(self, subnets: Iterable[str] = ()) -> None:
        self._subnets: list[IPNetwork] = []
        for subnet in subnets:
            self.add_subnet(subnet)

    def add_subnet(self, cidr: str) -> "IpBlockList":
        self._subnets.append(ipaddress.ip_network(cidr, strict=False))
        return self

    def matching_subnets(self, ip: str) -> list[IPNetwork]:
        addr = ipaddress.ip_address(ip.split("%", 1)[0])
        return [net for net in self._subnets if net.version == addr.version and addr in net]

    def check(self, ip: str) -> bool:
        return bool(self.matching_subnets(ip))


BLOCKED_IPS_FILTER = IpBlockList(BLOCKED_SUBNETS)
