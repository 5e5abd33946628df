"""
API tests for /api/admin/finance: API key enforcement, audit, commission
rates, the cash sweep and payout repair.
"""
from unittest.mock import patch

import httpx
import pytest

from ledger.core.config import settings
from ledger.core.exceptions import ErrorCode
from ledger.db.models.order import OrderStatus

ADMIN_KEY = "test-admin-key"
HEADERS = {"X-Admin-API-Key": ADMIN_KEY}


@pytest.fixture(autouse=True)
def admin_key():
    with patch.object(settings, "ADMIN_API_KEY", ADMIN_KEY):
        yield


class TestAdminAuth:
    """X-Admin-API-Key enforcement"""

    @pytest.mark.unit
    async def test_missing_key_is_401(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/admin/finance/commission-rates")

        assert response.status_code == 401

    @pytest.mark.unit
    async def test_wrong_key_is_403(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get(
            "/api/admin/finance/commission-rates", headers={"X-Admin-API-Key": "nope"}
        )

        assert response.status_code == 403

    @pytest.mark.unit
    async def test_unconfigured_key_refuses_everyone(self, test_client: httpx.AsyncClient) -> None:
        with patch.object(settings, "ADMIN_API_KEY", ""):
            response = await test_client.get(
                "/api/admin/finance/commission-rates", headers=HEADERS
            )

        assert response.status_code == 403


class TestCommissionRates:
    """GET/PUT /api/admin/finance/commission-rates"""

    @pytest.mark.unit
    async def test_defaults(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/admin/finance/commission-rates", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"platform": 0.15, "business": 1.0, "driver": 1.0}

    @pytest.mark.unit
    async def test_update_visible_immediately(self, test_client: httpx.AsyncClient) -> None:
        await test_client.get("/api/admin/finance/commission-rates", headers=HEADERS)

        response = await test_client.put(
            "/api/admin/finance/commission-rates",
            json={"platform": 0.2, "updated_by": 1},
            headers=HEADERS,
        )
        assert response.status_code == 200

        current = await test_client.get("/api/admin/finance/commission-rates", headers=HEADERS)
        assert current.json()["platform"] == 0.2

    @pytest.mark.unit
    async def test_unbalanced_update_rejected(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.put(
            "/api/admin/finance/commission-rates",
            json={"business": 0.5},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == ErrorCode.CONFIGURATION_ERROR.value

        current = await test_client.get("/api/admin/finance/commission-rates", headers=HEADERS)
        assert current.json()["business"] == 1.0

    @pytest.mark.unit
    async def test_out_of_range_rejected_by_schema(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.put(
            "/api/admin/finance/commission-rates",
            json={"platform": 1.5},
            headers=HEADERS,
        )

        assert response.status_code == 422


class TestAuditAndCash:
    """Audit, cash sweep, cash stats and payout repair"""

    @pytest.mark.unit
    async def test_audit_on_consistent_ledger(
        self, test_client: httpx.AsyncClient, order_factory, sample_business, sample_driver
    ) -> None:
        order = await order_factory(business_id=sample_business.id, driver_id=sample_driver.id)
        await test_client.post(f"/api/orders/{order.id}/deliver")

        with patch.object(settings, "ORDER_TAX_RATE", 0.0):
            response = await test_client.get("/api/admin/finance/audit", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["system_health"] == "healthy"
        assert data["total_checks"] == 10
        assert data["failed"] == 0

    @pytest.mark.unit
    async def test_overdue_check_with_nothing_outstanding(
        self, test_client: httpx.AsyncClient
    ) -> None:
        response = await test_client.post("/api/admin/finance/cash/overdue-check", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"checked": 0, "warned": [], "blocked": []}

    @pytest.mark.unit
    async def test_cash_stats(self, test_client: httpx.AsyncClient, wallet_factory, sample_driver) -> None:
        await wallet_factory(sample_driver.id, cash_owed=12000)

        response = await test_client.get("/api/admin/finance/cash/stats", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total_cash_owed"] == 12000
        assert data["drivers_with_debt"] == 1

    @pytest.mark.unit
    async def test_distribute_repair_path(
        self, test_client: httpx.AsyncClient, order_factory, sample_business, sample_driver
    ) -> None:
        order = await order_factory(
            business_id=sample_business.id,
            driver_id=sample_driver.id,
            status=OrderStatus.DELIVERED,
        )
        url = f"/api/admin/finance/orders/{order.id}/distribute"

        first = await test_client.post(url, headers=HEADERS)
        second = await test_client.post(url, headers=HEADERS)

        assert first.status_code == 200
        assert first.json()["split"]["business"] == 8500
        assert second.status_code == 409
        assert second.json()["error"]["code"] == ErrorCode.ORDER_ALREADY_DISTRIBUTED.value
