"""Items API tests."""
import uuid
from decimal import Decimal

from jose import jwt

from conftest import BOUNTY_FORM, auth_headers


def test_create_requires_auth(client):
    response = client.post("/items", json=BOUNTY_FORM)

    assert response.status_code in (401, 403)


def test_rejects_token_signed_with_another_key(client, owner):
    token = jwt.encode({"sub": str(owner.id)}, "not-the-secret", algorithm="HS256")
    response = client.post("/items", json=BOUNTY_FORM, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_create_bounty(client, owner):
    response = client.post("/items", json=BOUNTY_FORM, headers=auth_headers(owner))

    assert response.status_code == 201
    item = response.json()["item"]
    assert item["type"] == "bounty"
    assert Decimal(str(item["reward_amount"])) == Decimal("100")
    assert item["payment_status"] == "pending"
    assert item["status"] == "active"


def test_create_bounty_without_reward(client, owner):
    form = {k: v for k, v in BOUNTY_FORM.items() if k != "reward_amount"}

    response = client.post("/items", json=form, headers=auth_headers(owner))

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["details"]


def test_list_and_search(client, owner, bounty_item):
    response = client.get("/items", params={"type": "bounty", "search": "labrador"})

    assert response.status_code == 200
    body = response.json()
    assert [i["id"] for i in body["items"]] == [str(bounty_item.id)]
    assert body["pagination"]["total_items"] == 1

    assert client.get("/items", params={"type": "lost"}).json()["items"] == []


def test_list_rejects_unknown_type(client):
    response = client.get("/items", params={"type": "stolen"})

    assert response.status_code == 400


def test_get_item_with_escrow_state(client, owner, bounty_item):
    response = client.get(f"/items/{bounty_item.id}")

    assert response.status_code == 200
    body = response.json()
    assert body["item"]["escrow_state"] == "unfunded"
    assert body["contact_info"] == {"name": "Owner", "email": "owner@example.com"}


def test_get_missing_item(client):
    response = client.get(f"/items/{uuid.uuid4()}")

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_get_item_bad_id(client):
    response = client.get("/items/not-a-uuid")

    assert response.status_code == 400


def test_update_item(client, owner, bounty_item):
    response = client.patch(
        f"/items/{bounty_item.id}",
        json={"location": "Riverside"},
        headers=auth_headers(owner),
    )

    assert response.status_code == 200
    assert response.json()["item"]["location"] == "Riverside"


def test_reward_cannot_be_updated(client, owner, bounty_item):
    response = client.patch(
        f"/items/{bounty_item.id}",
        json={"reward_amount": "5"},
        headers=auth_headers(owner),
    )

    assert response.status_code == 400


def test_delete_funded_bounty_conflicts(client, owner, funded_item):
    response = client.delete(f"/items/{funded_item.id}", headers=auth_headers(owner))

    assert response.status_code == 409
    assert response.json()["error"] == "invalid_state_transition"


def test_delete_item(client, session, owner, bounty_item):
    response = client.delete(f"/items/{bounty_item.id}", headers=auth_headers(owner))

    assert response.status_code == 200
    assert client.get(f"/items/{bounty_item.id}").status_code == 404


def test_report_found(client, owner, finder, funded_item):
    response = client.post(
        f"/items/{funded_item.id}/report",
        json={"action": "found", "message": "He is safe with me"},
        headers=auth_headers(finder),
    )

    assert response.status_code == 200
    assert response.json()["ok"] is True

    item = client.get(f"/items/{funded_item.id}").json()["item"]
    assert item["status"] == "found"
    assert item["escrow_state"] == "ready_for_payout"

    again = client.post(
        f"/items/{funded_item.id}/report",
        json={"action": "claimed"},
        headers=auth_headers(finder),
    )
    assert again.status_code == 409


def test_report_own_item(client, owner, funded_item):
    response = client.post(
        f"/items/{funded_item.id}/report",
        json={"action": "found"},
        headers=auth_headers(owner),
    )

    assert response.status_code == 400
