"""
Tests for the billing API and platform HTTP clients, using httpx.MockTransport.
"""

import json

import httpx
import pytest

from monitoring.api_client import (
    APIError,
    APIResult,
    BillingAPIClient,
    PlatformClient,
    PlatformError,
)
from models.schemas import InstanceStatus
from monitoring.config import APIConfig, PlatformConfig


def _mount(client, handler):
    client._client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://test"
    )
    return client


@pytest.fixture
def api_config():
    return APIConfig(base_url="http://test", retry_count=2, retry_delay=0.0)


@pytest.fixture
def platform_config():
    return PlatformConfig(base_url="http://test", token="secret", retry_count=1, retry_delay=0.0)


# ---------------------------------------------------------------------------
# BillingAPIClient
# ---------------------------------------------------------------------------

class TestBillingAPIClient:
    @pytest.mark.asyncio
    async def test_list_instances_groups(self, api_config):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/api/v1/instances-groups"
            return httpx.Response(200, json=[
                {"uuid": "g1", "instances": [{"uuid": "i1", "data": {"vmid": 1}}]},
                {"uuid": "broken", "instances": "not-a-list"},
            ])

        client = _mount(BillingAPIClient(api_config), handler)
        groups = await client.list_instances_groups()

        assert [g.uuid for g in groups] == ["g1"]
        assert groups[0].instances[0].data == {"vmid": 1}

    @pytest.mark.asyncio
    async def test_list_instances_groups_error(self, api_config):
        client = _mount(BillingAPIClient(api_config), lambda r: httpx.Response(500, json={"detail": "db down"}))

        with pytest.raises(APIError) as exc:
            await client.list_instances_groups()
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_update_instance_data(self, api_config):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"uuid": "i1"})

        client = _mount(BillingAPIClient(api_config), handler)
        response = await client.update_instance_data("i1", {"cpu_last_monitoring": 120})

        assert response.result == APIResult.SUCCESS
        assert seen == {
            "method": "PATCH",
            "path": "/api/v1/instances/i1/data",
            "body": {"data": {"cpu_last_monitoring": 120}},
        }

    @pytest.mark.asyncio
    async def test_update_unknown_instance(self, api_config):
        client = _mount(BillingAPIClient(api_config), lambda r: httpx.Response(404, json={"detail": "nope"}))

        response = await client.update_instance_data("missing", {"a": 1})
        assert response.result == APIResult.NOT_FOUND

    @pytest.mark.asyncio
    async def test_update_instance_status(self, api_config):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"uuid": "i1", "status": "DEL"})

        client = _mount(BillingAPIClient(api_config), handler)
        response = await client.update_instance_status("i1", InstanceStatus.DEL)

        assert response.result == APIResult.SUCCESS
        assert seen == {"method": "PATCH", "path": "/api/v1/instances/i1/status", "body": {"status": "DEL"}}

    @pytest.mark.asyncio
    async def test_get_instance(self, api_config):
        def handler(request):
            assert request.url.path == "/api/v1/instances/i1"
            return httpx.Response(200, json={"uuid": "i1", "product": "basic", "data": {"vmid": 42}})

        client = _mount(BillingAPIClient(api_config), handler)
        instance = await client.get_instance("i1")

        assert instance.product == "basic"
        assert instance.data == {"vmid": 42}

    @pytest.mark.asyncio
    async def test_get_unknown_instance(self, api_config):
        client = _mount(BillingAPIClient(api_config), lambda r: httpx.Response(404))

        with pytest.raises(APIError) as exc:
            await client.get_instance("missing")
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_acquire_flag_conflict(self, api_config):
        def handler(request):
            assert json.loads(request.content) == {"group": "g1", "cycle": 5, "owner": "w1"}
            return httpx.Response(409, json={"detail": "taken"})

        client = _mount(BillingAPIClient(api_config), handler)
        response = await client.acquire_flag("g1", 5, "w1")

        assert response.result == APIResult.CONFLICT

    @pytest.mark.asyncio
    async def test_server_error_detail(self, api_config):
        client = _mount(BillingAPIClient(api_config), lambda r: httpx.Response(500, json={"detail": "db down"}))

        response = await client.update_instance_data("i1", {"a": 1})
        assert response.result == APIResult.ERROR
        assert response.error == "db down"

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self, api_config):
        calls = []

        def handler(request):
            calls.append(1)
            raise httpx.ConnectError("refused", request=request)

        client = _mount(BillingAPIClient(api_config), handler)
        response = await client.update_instance_data("i1", {"a": 1})

        assert response.result == APIResult.ERROR
        assert response.status_code == 0
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_health_check(self, api_config):
        client = _mount(BillingAPIClient(api_config), lambda r: httpx.Response(200, json={"status": "ok"}))
        assert await client.health_check() is True

        client = _mount(BillingAPIClient(api_config), lambda r: httpx.Response(503))
        assert await client.health_check() is False


# ---------------------------------------------------------------------------
# PlatformClient
# ---------------------------------------------------------------------------

class TestPlatformClient:
    def test_auth_header(self, platform_config):
        client = PlatformClient(platform_config)
        assert client.headers == {"Authorization": "Bearer secret"}

    @pytest.mark.asyncio
    async def test_get_vm(self, platform_config):
        def handler(request):
            assert request.url.path == "/vms/42"
            return httpx.Response(200, json={
                "id": 42,
                "stime": 100,
                "vcpu": 2,
                "memory": 2048,
                "history": [{"seq": 0, "stime": 100, "state": 3, "lcm_state": 3}],
            })

        client = _mount(PlatformClient(platform_config), handler)
        vm = await client.get_vm(42)

        assert vm.id == 42
        assert vm.vcpu == 2
        assert vm.history[0].stime == 100

    @pytest.mark.asyncio
    async def test_get_vm_failure(self, platform_config):
        client = _mount(PlatformClient(platform_config), lambda r: httpx.Response(502, text="bad gateway"))

        with pytest.raises(PlatformError):
            await client.get_vm(42)

    @pytest.mark.asyncio
    async def test_get_vm_malformed(self, platform_config):
        client = _mount(PlatformClient(platform_config), lambda r: httpx.Response(200, json={"name": "no id"}))

        with pytest.raises(PlatformError):
            await client.get_vm(42)

    @pytest.mark.asyncio
    async def test_get_vm_id_by_name(self, platform_config):
        def handler(request):
            assert request.url.path == "/vms/by-name/web-1"
            return httpx.Response(200, json={"id": 7})

        client = _mount(PlatformClient(platform_config), handler)
        assert await client.get_vm_id_by_name("web-1") == 7

    @pytest.mark.asyncio
    async def test_get_vm_id_by_name_missing(self, platform_config):
        client = _mount(PlatformClient(platform_config), lambda r: httpx.Response(404))

        with pytest.raises(PlatformError):
            await client.get_vm_id_by_name("ghost")

    @pytest.mark.asyncio
    async def test_vm_actions(self, platform_config):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            return httpx.Response(200, json={})

        client = _mount(PlatformClient(platform_config), handler)
        await client.suspend_vm(42)
        await client.resume_vm(42)

        assert calls == [("POST", "/vms/42/suspend"), ("POST", "/vms/42/resume")]

    @pytest.mark.asyncio
    async def test_vm_action_failure(self, platform_config):
        client = _mount(PlatformClient(platform_config), lambda r: httpx.Response(409, json={"detail": "busy"}))

        with pytest.raises(PlatformError):
            await client.suspend_vm(42)
