"""
VPN IP allocation service — addresses inside the tunnel network.

The tunnel network is one CIDR (VPN_NETWORK) with one address reserved for
the OpenVPN server itself (VPN_SERVER_IP). Every other usable address can
be assigned to at most one live identity through User.vpn_ip.

Allocation is a linear walk:
  network+1, network+2, ... up to (but not including) the broadcast address,
  skipping the server address and anything already assigned. The first free
  address wins. Nothing is reserved by the walk itself: two concurrent
  requests can be handed the same "next" address, and the partial unique
  index on users.vpn_ip decides which write wins (see user_service).

Addresses are compared in their canonical textual form, as produced by the
ipaddress module, and that is also the form stored on the user record.
"""

import ipaddress
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    InvalidIPAddressError,
    InvalidNetworkError,
    IPAlreadyUsedError,
    IPOutOfRangeError,
    IPReservedForServerError,
    NetworkNotConfiguredError,
    NoAvailableIPError,
)
from app.models.user import User


class VpnIpAllocator:
    def __init__(self, network: str, server_ip: str = ""):
        self.network = network.strip()
        self.server_ip = server_ip.strip()

    def _parse_network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        if not self.network:
            raise NetworkNotConfiguredError()
        try:
            return ipaddress.ip_network(self.network, strict=False)
        except ValueError:
            raise InvalidNetworkError(self.network)

    def _server_address(self):
        if not self.server_ip:
            return None
        try:
            return ipaddress.ip_address(self.server_ip)
        except ValueError:
            return None

    async def _assigned(self, db: AsyncSession) -> set[str]:
        """Distinct non-empty vpn_ip values of live identities."""
        result = await db.execute(
            select(User.vpn_ip)
            .where(
                User.deleted_at.is_(None),
                User.vpn_ip.is_not(None),
                User.vpn_ip != "",
            )
            .distinct()
        )
        return {ip for ip in result.scalars().all()}

    async def next_available(self, db: AsyncSession) -> str:
        """
        Return the lowest free address in the network.

        Raises:
            NetworkNotConfiguredError: VPN_NETWORK is empty.
            InvalidNetworkError: VPN_NETWORK is not a valid CIDR.
            NoAvailableIPError: Every usable address is taken.
        """
        net = self._parse_network()
        taken = {_canonical(ip) for ip in await self._assigned(db)}
        server = self._server_address()
        if server is not None:
            taken.add(str(server))

        first = int(net.network_address) + 1
        last = int(net.broadcast_address)
        if net.version == 4:
            # IPv4 reserves the all-ones host address for broadcast
            last -= 1

        address_cls = type(net.network_address)
        for value in range(first, last + 1):
            candidate = str(address_cls(value))
            if candidate not in taken:
                return candidate
        raise NoAvailableIPError()

    async def validate(
        self,
        db: AsyncSession,
        ip: str,
        exclude_user_id: uuid.UUID | None = None,
    ) -> str:
        """
        Check that ip may be assigned, returning its canonical form.

        exclude_user_id lets an identity keep the address it already holds.
        """
        net = self._parse_network()
        try:
            address = ipaddress.ip_address(ip.strip())
        except ValueError:
            raise InvalidIPAddressError(ip)

        if address.version != net.version or address not in net:
            raise IPOutOfRangeError(ip)
        if address == self._server_address():
            raise IPReservedForServerError(ip)

        canonical = str(address)
        query = select(func.count()).select_from(User).where(
            User.vpn_ip == canonical,
            User.deleted_at.is_(None),
        )
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)
        count = (await db.execute(query)).scalar_one()
        if count:
            raise IPAlreadyUsedError(ip)
        return canonical

    async def network_info(self, db: AsyncSession) -> dict:
        net = self._parse_network()
        host_bits = net.max_prefixlen - net.prefixlen
        total = max(0, 2 ** host_bits - 2)

        used = len(await self._assigned(db))
        if self.server_ip:
            used += 1

        return {
            "network": self.network,
            "server_ip": self.server_ip,
            "total_ips": total,
            "used_ips": used,
            "available_ips": total - used,
        }

    async def used_ips(self, db: AsyncSession) -> list[str]:
        """Assigned addresses in ascending numeric order."""
        return sorted(await self._assigned(db), key=_sort_key)


def _canonical(ip: str) -> str:
    try:
        return str(ipaddress.ip_address(ip))
    except ValueError:
        return ip


def _sort_key(ip: str) -> tuple[int, int]:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        # Unparseable values sort first, as zero
        return (0, 0)
    return (address.version, int(address))
