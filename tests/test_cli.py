"""
Tests for the monitoring CLI commands that do not loop: manual renew.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from models.schemas import Instance
from monitoring import __main__ as cli
from monitoring.api_client import APIError
from monitoring.driver import InstanceBillingResult


@pytest.fixture
def driver(monkeypatch):
    driver = MagicMock()
    driver.api_client.get_instance = AsyncMock(return_value=Instance(uuid="inst-1"))
    driver.renew_instance = AsyncMock(return_value=InstanceBillingResult(instance="inst-1", success=True))
    monkeypatch.setattr(cli, "_build_driver", AsyncMock(return_value=driver))
    monkeypatch.setattr(cli, "close_api_client", AsyncMock())
    return driver


class TestRenewCommand:
    @pytest.mark.asyncio
    async def test_renews_loaded_instance(self, driver):
        assert await cli.run_renew("inst-1") is True

        driver.api_client.get_instance.assert_awaited_once_with("inst-1")
        assert driver.renew_instance.await_args.args[0].uuid == "inst-1"
        cli.close_api_client.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_instance(self, driver):
        driver.api_client.get_instance.side_effect = APIError(404, "Resource not found")

        assert await cli.run_renew("missing") is False
        driver.renew_instance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_renew(self, driver):
        driver.renew_instance.return_value = InstanceBillingResult(instance="inst-1", success=False, error="db down")

        assert await cli.run_renew("inst-1") is False
