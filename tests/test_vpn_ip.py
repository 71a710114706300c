"""
Tests for VPN address allocation.

The allocator is exercised directly against the database first, then
through the /vpn endpoints.
"""

import pytest

from app.exceptions import (
    InvalidIPAddressError,
    InvalidNetworkError,
    IPAlreadyUsedError,
    IPOutOfRangeError,
    IPReservedForServerError,
    NetworkNotConfiguredError,
    NoAvailableIPError,
)
from app.services.vpn_ip_service import VpnIpAllocator


@pytest.fixture
def allocator():
    return VpnIpAllocator("192.168.1.0/24", "192.168.1.1")


class TestNextAvailable:

    async def test_skips_server_and_used(self, db_session, allocator, seed):
        await seed("dave", vpn_ip="192.168.1.2")
        assert await allocator.next_available(db_session) == "192.168.1.3"

    async def test_fills_gaps(self, db_session, allocator, seed):
        await seed("dave", vpn_ip="192.168.1.2")
        await seed("erin", vpn_ip="192.168.1.4")
        assert await allocator.next_available(db_session) == "192.168.1.3"

    async def test_without_server_ip(self, db_session):
        allocator = VpnIpAllocator("192.168.1.0/24")
        assert await allocator.next_available(db_session) == "192.168.1.1"

    async def test_deleted_users_release_their_ip(self, db_session, allocator, seed):
        from datetime import datetime, timezone

        await seed("dave", vpn_ip="192.168.1.2", deleted_at=datetime.now(timezone.utc))
        assert await allocator.next_available(db_session) == "192.168.1.2"

    async def test_saturated_network(self, db_session, seed):
        """A /30 has two usable hosts: the server and one client."""
        allocator = VpnIpAllocator("10.0.0.0/30", "10.0.0.1")
        await seed("dave", vpn_ip="10.0.0.2")
        with pytest.raises(NoAvailableIPError):
            await allocator.next_available(db_session)

    @pytest.mark.parametrize("network", ["10.0.0.5/32", "10.0.0.4/31"])
    async def test_networks_without_hosts(self, db_session, network):
        allocator = VpnIpAllocator(network)
        with pytest.raises(NoAvailableIPError):
            await allocator.next_available(db_session)
        info = await allocator.network_info(db_session)
        assert info["total_ips"] == 0

    async def test_ipv6_network(self, db_session):
        allocator = VpnIpAllocator("fd00::/126", "fd00::1")
        assert await allocator.next_available(db_session) == "fd00::2"

    async def test_not_configured(self, db_session):
        with pytest.raises(NetworkNotConfiguredError):
            await VpnIpAllocator("").next_available(db_session)

    async def test_invalid_network(self, db_session):
        with pytest.raises(InvalidNetworkError):
            await VpnIpAllocator("10.8.0.0/99").next_available(db_session)


class TestValidate:

    async def test_free_address(self, db_session, allocator):
        assert await allocator.validate(db_session, "192.168.1.50") == "192.168.1.50"

    async def test_reserved_for_server(self, db_session, allocator):
        with pytest.raises(IPReservedForServerError):
            await allocator.validate(db_session, "192.168.1.1")

    async def test_used_by_someone(self, db_session, allocator, seed):
        await seed("dave", vpn_ip="192.168.1.2")
        with pytest.raises(IPAlreadyUsedError):
            await allocator.validate(db_session, "192.168.1.2")

    async def test_own_address_when_excluded(self, db_session, allocator, seed):
        dave = await seed("dave", vpn_ip="192.168.1.2")
        result = await allocator.validate(db_session, "192.168.1.2", exclude_user_id=dave.id)
        assert result == "192.168.1.2"

    async def test_out_of_range(self, db_session, allocator):
        with pytest.raises(IPOutOfRangeError):
            await allocator.validate(db_session, "10.0.0.1")

    async def test_other_family_is_out_of_range(self, db_session, allocator):
        with pytest.raises(IPOutOfRangeError):
            await allocator.validate(db_session, "fd00::2")

    @pytest.mark.parametrize("ip", ["invalid", "192.168.1.256", ""])
    async def test_invalid_address(self, db_session, allocator, ip):
        with pytest.raises(InvalidIPAddressError):
            await allocator.validate(db_session, ip)

    async def test_not_configured(self, db_session):
        with pytest.raises(NetworkNotConfiguredError):
            await VpnIpAllocator("").validate(db_session, "10.8.0.2")


class TestNetworkInfo:

    async def test_counts(self, db_session, allocator, seed):
        await seed("dave", vpn_ip="192.168.1.2")
        await seed("erin", vpn_ip="192.168.1.3")
        await seed("frank")

        info = await allocator.network_info(db_session)
        assert info == {
            "network": "192.168.1.0/24",
            "server_ip": "192.168.1.1",
            "total_ips": 254,
            "used_ips": 3,
            "available_ips": 251,
        }

    async def test_used_ips_numeric_order(self, db_session, allocator, seed):
        for name, ip in [("a", "192.168.1.10"), ("b", "192.168.1.9"), ("c", "192.168.1.100")]:
            await seed(f"user_{name}", vpn_ip=ip)

        assert await allocator.used_ips(db_session) == [
            "192.168.1.9", "192.168.1.10", "192.168.1.100",
        ]


class TestVpnEndpoints:

    async def test_next_ip(self, client, admin_headers, managed_user, other_user):
        response = await client.get("/vpn/next-ip", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"ip": "10.8.0.4"}

    async def test_network_info(self, client, admin_headers, managed_user, other_user):
        response = await client.get("/vpn/network-info", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["total_ips"] == 254
        assert data["used_ips"] == 3
        assert data["available_ips"] == 251

    async def test_used_ips(self, client, admin_headers, managed_user, other_user):
        response = await client.get("/vpn/used-ips", headers=admin_headers)
        assert response.json() == {"ips": ["10.8.0.2", "10.8.0.3"]}

    async def test_validate_ip_valid(self, client, admin_headers):
        response = await client.post(
            "/vpn/validate-ip", json={"ip": "10.8.0.50"}, headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["valid"] is True

    async def test_validate_ip_used(self, client, admin_headers, other_user):
        response = await client.post(
            "/vpn/validate-ip", json={"ip": "10.8.0.3"}, headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json() == {
            "valid": False, "message": "IP address 10.8.0.3 is already in use",
        }

    async def test_validate_ip_excluding_owner(self, client, admin_headers, other_user):
        response = await client.post(
            "/vpn/validate-ip",
            json={"ip": "10.8.0.3", "exclude_user_id": str(other_user.id)},
            headers=admin_headers,
        )
        assert response.json()["valid"] is True

    async def test_validate_ip_malformed(self, client, admin_headers):
        response = await client.post(
            "/vpn/validate-ip", json={"ip": "nope"}, headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["valid"] is False

    async def test_not_configured(self, make_client, admin_user, password):
        client = await make_client(VPN_NETWORK="")
        login = await client.post(
            "/auth/login", json={"username": "admin", "password": password},
        )
        headers = {"Authorization": f"Bearer {login.json()['token']}"}
        client.cookies.clear()

        response = await client.get("/vpn/next-ip", headers=headers)
        assert response.status_code == 400
        assert response.json()["message"] == "VPN network not configured"

    async def test_requires_authentication(self, client):
        response = await client.get("/vpn/next-ip")
        assert response.status_code == 401

    async def test_any_role_may_query(self, client, user_headers):
        response = await client.get("/vpn/used-ips", headers=user_headers)
        assert response.status_code == 200
