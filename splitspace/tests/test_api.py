"""
HTTP API tests.

End-to-end flows through the FastAPI app: provisioning, top-up, PIN,
transfers, rooms, HourGlass and admin operations.
"""

import pytest
from datetime import timedelta

from splitspace.app.core.clock import utcnow
from splitspace.app.models.enums import UserRole
from splitspace.app.models.recurring_plan import RecurringPlan
from splitspace.app.models.room import Room

API = "/v1"


@pytest.fixture
async def service_headers(client, make_token, low_limits):
    headers = make_token(900, role=UserRole.SERVICE, username="payments")
    response = await client.post(f"{API}/accounts", headers=headers)
    assert response.status_code == 200
    return headers


@pytest.fixture
async def admin_headers(client, make_token, low_limits):
    headers = make_token(901, role=UserRole.ADMIN, username="ops")
    response = await client.post(f"{API}/accounts", headers=headers)
    assert response.status_code == 200
    return headers


@pytest.fixture
def provision(client, make_token, service_headers):
    """Factory: provision a user through the API, fund it and set PIN 1234."""
    async def _provision(user_id, balance=None):
        headers = make_token(user_id)
        response = await client.post(f"{API}/accounts", headers=headers)
        assert response.status_code == 200
        if balance:
            topup = await client.post(f"{API}/internal/topups", headers=service_headers, json={
                "user_id": user_id, "amount": balance, "reference": f"seed-{user_id}",
            })
            assert topup.status_code == 200
        response = await client.post(f"{API}/wallet/pin", headers=headers, json={"pin": "1234"})
        assert response.status_code == 200
        return headers

    return _provision


@pytest.mark.asyncio
async def test_health_reports_redis(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["redis"] == "up"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_provisioning_is_idempotent(client, make_token):
    headers = make_token(1, username="ada")

    first = await client.post(f"{API}/accounts", headers=headers)
    second = await client.post(f"{API}/accounts", headers=headers)

    assert first.json()["created"] is True
    assert second.json()["created"] is False
    assert first.json()["wallet"]["id"] == second.json()["wallet"]["id"]
    assert first.json()["wallet"]["balance"] == "0.00"
    assert first.json()["has_pin"] is False


@pytest.mark.asyncio
async def test_unprovisioned_and_anonymous_callers_rejected(client, make_token):
    assert (await client.get(f"{API}/wallet/me")).status_code in (401, 403)

    response = await client.get(f"{API}/wallet/me", headers=make_token(77))
    assert response.status_code == 401
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_only_service_can_top_up(client, provision):
    headers = await provision(1)
    response = await client.post(f"{API}/internal/topups", headers=headers, json={
        "user_id": 1, "amount": "100.00", "reference": "self-credit",
    })
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_transfer_flow(client, provision):
    alice = await provision(1, balance="1000.00")
    bob = await provision(2)

    body = {"to_user_id": 2, "amount": "250.00", "pin": "1234", "idempotency_key": "k-1"}
    first = await client.post(f"{API}/transfers", headers=alice, json=body)
    replay = await client.post(f"{API}/transfers", headers=alice, json=body)

    assert first.status_code == 200
    assert first.json()["new_balance"] == "750.00"
    assert replay.json()["replayed"] is True
    assert replay.json()["transaction_id"] == first.json()["transaction_id"]

    wallet = await client.get(f"{API}/wallet/me", headers=bob)
    assert wallet.json()["balance"] == "250.00"

    history = await client.get(f"{API}/wallet/me/transactions", headers=alice)
    rows = history.json()["transactions"]
    assert [(r["entry_type"], r["direction"]) for r in rows] == [("transfer", "debit"), ("topup", "credit")]
    assert rows[0]["balance_after"] == "750.00"


@pytest.mark.asyncio
async def test_transfer_errors_use_structured_body(client, provision):
    alice = await provision(1, balance="100.00")
    await provision(2)

    no_pin = await client.post(f"{API}/transfers", headers=alice, json={"to_user_id": 2, "amount": "10.00"})
    assert no_pin.status_code == 403
    assert no_pin.json()["error_code"] == "ERR_PIN_001"

    broke = await client.post(f"{API}/transfers", headers=alice, json={
        "to_user_id": 2, "amount": "500.00", "pin": "1234",
    })
    assert broke.status_code == 400
    assert broke.json() == {
        "success": False,
        "error_code": "ERR_FUNDS_001",
        "message": "Insufficient balance",
        "details": {"available": "100.00", "requested": "500.00"},
    }

    bad_amount = await client.post(f"{API}/transfers", headers=alice, json={
        "to_user_id": 2, "amount": "0", "pin": "1234",
    })
    assert bad_amount.json()["error_code"] == "ERR_VALIDATION_002"


@pytest.mark.asyncio
async def test_pin_lockout_over_http(client, provision):
    alice = await provision(1)

    for _ in range(4):
        response = await client.post(f"{API}/wallet/pin/verify", headers=alice, json={"pin": "0000"})
        assert response.json()["success"] is False
    locked = await client.post(f"{API}/wallet/pin/verify", headers=alice, json={"pin": "0000"})
    assert locked.json()["locked_until"] is not None

    still_locked = await client.post(f"{API}/wallet/pin/verify", headers=alice, json={"pin": "1234"})
    assert still_locked.json()["success"] is False


@pytest.mark.asyncio
async def test_room_flow(client, provision):
    creator = await provision(1)
    member = await provision(2, balance="500.00")

    created = await client.post(f"{API}/rooms", headers=creator, json={
        "name": "Birthday gift", "unlock_type": "target_reached", "target_amount": "300.00",
    })
    assert created.status_code == 200
    room = created.json()

    joined = await client.post(f"{API}/rooms/join", headers=member, json={"invite_code": room["invite_code"]})
    assert joined.json()["joined"] is True

    paid = await client.post(f"{API}/rooms/{room['id']}/contributions", headers=member, json={"amount": "300.00"})
    assert paid.status_code == 200
    assert paid.json()["unlocked"] is True

    detail = await client.get(f"{API}/rooms/{room['id']}", headers=creator)
    assert detail.json()["room"]["status"] == "unlocked"
    assert detail.json()["members"][1]["total_contributed"] == "300.00"

    wallet = await client.get(f"{API}/wallet/me", headers=creator)
    assert wallet.json()["balance"] == "300.00"

    listed = await client.get(f"{API}/rooms", headers=member)
    assert [r["id"] for r in listed.json()] == [room["id"]]


@pytest.mark.asyncio
async def test_member_cannot_force_room(client, provision):
    creator = await provision(1)
    member = await provision(2)
    room = (await client.post(f"{API}/rooms", headers=creator, json={
        "name": "Pool", "unlock_type": "manual",
    })).json()
    await client.post(f"{API}/rooms/join", headers=member, json={"invite_code": room["invite_code"]})

    forbidden = await client.post(f"{API}/rooms/{room['id']}/refund", headers=member)
    assert forbidden.status_code == 403

    refunded = await client.post(f"{API}/rooms/{room['id']}/refund", headers=creator)
    assert refunded.status_code == 200
    assert refunded.json()["status"] == "archived"


@pytest.mark.asyncio
async def test_hourglass_flow(client, provision, admin_headers, db_session):
    saver = await provision(1, balance="1000.00")

    created = await client.post(f"{API}/hourglass/plans", headers=saver, json={
        "name": "School fees",
        "target_amount": "600.00",
        "deduction_amount": "100.00",
        "recurrence": "daily",
        "end_date": "2099-01-01T00:00:00Z",
    })
    assert created.status_code == 200
    plan = created.json()
    assert plan["current_saved"] == "100.00"

    # Nothing is due yet, and a caller cannot push the clock forward
    early = await client.post(f"{API}/admin/ops/sweep", headers=admin_headers, json={
        "now": "2099-01-01T00:00:00Z",
    })
    assert early.status_code == 200
    assert early.json()["plans"] == []

    stored = await db_session.get(RecurringPlan, plan["id"])
    stored.next_deduction_date = utcnow() - timedelta(minutes=1)
    await db_session.commit()

    sweep = await client.post(f"{API}/admin/ops/sweep", headers=admin_headers)
    assert sweep.status_code == 200
    assert [p["outcome"] for p in sweep.json()["plans"]] == ["deducted"]
    again = await client.post(f"{API}/admin/ops/sweep", headers=admin_headers)
    assert again.json()["plans"] == []

    paused = await client.post(f"{API}/hourglass/plans/{plan['id']}/pause", headers=saver)
    assert paused.json()["status"] == "paused"

    cancelled = await client.post(f"{API}/hourglass/plans/{plan['id']}/cancel", headers=saver)
    assert cancelled.json()["status"] == "cancelled"

    wallet = await client.get(f"{API}/wallet/me", headers=saver)
    assert wallet.json()["balance"] == "1000.00"

    plans = await client.get(f"{API}/hourglass/plans", headers=saver, params={"status": "cancelled"})
    assert len(plans.json()) == 1


@pytest.mark.asyncio
async def test_admin_limits_and_tier(client, provision, admin_headers):
    alice = await provision(1, balance="5000.00")
    await provision(2)

    response = await client.put(f"{API}/admin/limits/default", headers=admin_headers, json={
        "daily_limit": "2000.00", "per_transaction_limit": "1000.00", "min_transaction": "50.00",
    })
    assert response.status_code == 200
    assert response.json()["per_transaction_limit"] == "1000.00"

    over = await client.post(f"{API}/transfers", headers=alice, json={
        "to_user_id": 2, "amount": "1500.00", "pin": "1234",
    })
    assert over.status_code == 400
    assert over.json()["details"]["limit"] == "per_transaction"

    tier = await client.patch(f"{API}/admin/users/1/tier", headers=admin_headers, json={"tier": "verified"})
    assert tier.json() == {"user_id": 1, "tier": "verified"}

    ok = await client.post(f"{API}/transfers", headers=alice, json={
        "to_user_id": 2, "amount": "1500.00", "pin": "1234",
    })
    assert ok.status_code == 200

    activity = await client.get(f"{API}/admin/users/1/activity", headers=admin_headers,
                                params={"action": "TIER_CHANGED"})
    assert len(activity.json()) == 1


@pytest.mark.asyncio
async def test_admin_routes_require_admin(client, provision):
    alice = await provision(1)
    response = await client.put(f"{API}/admin/limits/default", headers=alice, json={
        "daily_limit": "1.00", "per_transaction_limit": "1.00", "min_transaction": "1.00",
    })
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_outsider_cannot_trigger_room_evaluation(client, provision, db_session):
    creator = await provision(1)
    outsider = await provision(2)
    room = (await client.post(f"{API}/rooms", headers=creator, json={
        "name": "Holiday", "unlock_type": "date_reached",
        "unlock_date": (utcnow() + timedelta(days=1)).isoformat() + "Z",
    })).json()

    stored = await db_session.get(Room, room["id"])
    stored.unlock_date = utcnow() - timedelta(minutes=1)
    await db_session.commit()

    forbidden = await client.post(f"{API}/rooms/{room['id']}/evaluate", headers=outsider)
    assert forbidden.status_code == 403
    detail = await client.get(f"{API}/rooms/{room['id']}", headers=creator)
    assert detail.json()["room"]["status"] == "open"

    evaluated = await client.post(f"{API}/rooms/{room['id']}/evaluate", headers=creator)
    assert evaluated.json() == {"room_id": room["id"], "unlocked": True, "status": "unlocked"}
