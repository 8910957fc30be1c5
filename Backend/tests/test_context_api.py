"""
API tests for the /context endpoints.

Requests identify the caller with the X-User-Id header (development
auth mode is enabled by the client fixture).
"""

import uuid

import pytest

from vallaroo import models


def headers_for(user_id: uuid.UUID) -> dict:
    return {"X-User-Id": str(user_id)}


async def _seed_two_businesses(session_factory, user_id):
    async with session_factory() as session:
        first = models.Business(owner_id=user_id, name="Appam House", city="Kochi")
        second = models.Business(owner_id=uuid.uuid4(), name="Biriyani Point", city="Kozhikode")
        session.add_all([first, second])
        await session.flush()
        first_shop = models.Shop(business_id=first.id, name="Main")
        second_shop = models.Shop(business_id=second.id, name="Beach Road")
        session.add_all([first_shop, second_shop])
        await session.flush()
        session.add_all([
            models.StaffMember(
                business_id=first.id, user_id=user_id, role="owner", display_name="Owner"
            ),
            models.StaffMember(
                business_id=second.id,
                shop_id=second_shop.id,
                user_id=user_id,
                role="cashier",
                display_name="Cashier",
            ),
        ])
        await session.commit()
        return first, second, first_shop, second_shop


class TestGetContext:

    @pytest.mark.asyncio
    async def test_requires_identity(self, client):
        response = await client.get("/context")

        assert response.status_code == 401
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "AUTHENTICATION_REQUIRED"

    @pytest.mark.asyncio
    async def test_malformed_user_id_rejected(self, client):
        response = await client.get("/context", headers={"X-User-Id": "not-a-uuid"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_new_user_needs_onboarding(self, client, user_id):
        response = await client.get("/context", headers=headers_for(user_id))

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "no_businesses"
        assert data["needs_onboarding"] is True
        assert data["businesses"] == []
        assert data["active_business"] is None

    @pytest.mark.asyncio
    async def test_active_context(self, client, session_factory, user_id):
        first, second, first_shop, _ = await _seed_two_businesses(session_factory, user_id)

        response = await client.get("/context", headers=headers_for(user_id))

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "active"
        assert data["needs_onboarding"] is False
        assert {b["id"] for b in data["businesses"]} == {str(first.id), str(second.id)}
        assert data["active_business"]["id"] == str(first.id)
        assert data["active_shop"]["id"] == str(first_shop.id)
        assert data["active_staff"]["role"] == "owner"
        assert data["active_staff"]["is_business_level"] is True


class TestSwitchEndpoints:

    @pytest.mark.asyncio
    async def test_switch_business(self, client, session_factory, user_id):
        _, second, _, second_shop = await _seed_two_businesses(session_factory, user_id)

        response = await client.put(
            "/context/business",
            json={"business_id": str(second.id)},
            headers=headers_for(user_id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["active_business"]["id"] == str(second.id)
        assert data["active_shop"]["id"] == str(second_shop.id)
        assert data["active_shop"]["business_id"] == str(second.id)
        assert data["active_staff"]["role"] == "cashier"

    @pytest.mark.asyncio
    async def test_switch_to_unknown_business_is_404(self, client, session_factory, user_id):
        await _seed_two_businesses(session_factory, user_id)

        response = await client.put(
            "/context/business",
            json={"business_id": str(uuid.uuid4())},
            headers=headers_for(user_id),
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "BUSINESS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_clear_business(self, client, session_factory, user_id):
        await _seed_two_businesses(session_factory, user_id)

        response = await client.put(
            "/context/business", json={"business_id": None}, headers=headers_for(user_id)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "active"
        assert data["active_business"] is None
        assert data["active_shop"] is None
        assert data["shops"] == []

    @pytest.mark.asyncio
    async def test_switch_shop_outside_active_business_is_404(
        self, client, session_factory, user_id
    ):
        _, _, _, second_shop = await _seed_two_businesses(session_factory, user_id)

        response = await client.put(
            "/context/shop",
            json={"shop_id": str(second_shop.id)},
            headers=headers_for(user_id),
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "SHOP_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_clear_shop(self, client, session_factory, user_id):
        await _seed_two_businesses(session_factory, user_id)

        response = await client.put(
            "/context/shop", json={"shop_id": None}, headers=headers_for(user_id)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["active_shop"] is None
        assert data["active_staff"]["role"] == "owner"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_refresh_picks_up_new_business(self, client, session_factory, user_id):
        first = await client.get("/context", headers=headers_for(user_id))
        assert first.json()["needs_onboarding"] is True

        await _seed_two_businesses(session_factory, user_id)

        cached = await client.get("/context", headers=headers_for(user_id))
        refreshed = await client.post("/context/refresh", headers=headers_for(user_id))

        assert cached.json()["needs_onboarding"] is True
        assert refreshed.status_code == 200
        assert refreshed.json()["state"] == "active"

    @pytest.mark.asyncio
    async def test_sign_out_destroys_context(self, client, user_id):
        from vallaroo.main import app

        await client.get("/context", headers=headers_for(user_id))
        registry = app.state.context_registry
        assert registry.get(user_id) is not None

        response = await client.delete("/context", headers=headers_for(user_id))

        assert response.status_code == 204
        assert registry.get(user_id) is None

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestClosedContext:

    @pytest.mark.asyncio
    async def test_request_holding_closed_context_gets_409(self, client, user_id):
        """A switch racing a sign-out sees a closed context."""
        from vallaroo.main import app
        from vallaroo.tenancy.context import BusinessContext
        from vallaroo.tenancy.sessions import get_business_context

        from conftest import FakeDataSource

        closed = BusinessContext(user_id, FakeDataSource())
        await closed.close()
        app.dependency_overrides[get_business_context] = lambda: closed

        response = await client.put(
            "/context/shop", json={"shop_id": None}, headers=headers_for(user_id)
        )

        assert response.status_code == 409
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "CONTEXT_UNAVAILABLE"
