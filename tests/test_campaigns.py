from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

import campaigns.router as campaigns_router
from core.exceptions import BlockchainError
from core.models import Campaign, User
from conftest import CAMPAIGN_ADDRESS, OTHER_ADDRESS, auth

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


def past(days=1):
    return datetime.now(timezone.utc) - timedelta(days=days)


# Listing

def test_list_campaigns_enriches_with_chain_data(client, make_user, make_campaign, chain):
    creator = make_user(role="creator")
    make_campaign(creator, target="2")
    chain.add_campaign(CAMPAIGN_ADDRESS, goal_eth="2", raised_eth="0.5")

    response = client.get("/api/campaigns")

    assert response.status_code == 200
    [campaign] = response.json()["campaigns"]
    assert campaign["address"] == CAMPAIGN_ADDRESS
    assert campaign["status"] == "active"
    assert campaign["totalRaised"] == "0.5"
    assert campaign["goalAmount"] == "2"
    assert campaign["progress"] == pytest.approx(25.0)
    assert campaign["blockchain"]["goal"] == str(2 * 10**18)
    assert campaign["blockchainError"] is None


def test_list_campaigns_falls_back_to_database(client, make_user, make_campaign):
    creator = make_user(role="creator")
    make_campaign(creator)

    [campaign] = client.get("/api/campaigns").json()["campaigns"]

    assert campaign["blockchain"] is None
    assert "No contract deployed" in campaign["blockchainError"]
    assert campaign["status"] == "active"
    assert campaign["timeRemaining"] > 0
    assert campaign["contributionCount"] == 0


def test_list_campaigns_hides_inactive_rows(client, make_user, make_campaign):
    creator = make_user(role="creator")
    make_campaign(creator, is_active=False)

    assert client.get("/api/campaigns").json()["campaigns"] == []
    assert len(client.get("/api/campaigns", params={"creator": creator.id}).json()["campaigns"]) == 1


def test_listing_triggers_auto_withdraw_once(client, make_user, make_campaign, chain, db):
    creator = make_user(role="creator")
    campaign = make_campaign(creator)
    chain.add_campaign(CAMPAIGN_ADDRESS, raised_eth="1", seconds_left=0)

    client.get("/api/campaigns")
    client.get("/api/campaigns")

    assert chain.calls == [("withdraw_campaign_funds", CAMPAIGN_ADDRESS)]
    db.expire_all()
    campaign = db.get(Campaign, campaign.id)
    assert campaign.withdrawal_processed is True
    assert campaign.withdrawal_tx_hash == "0xwithdraw"


def test_failed_auto_withdraw_does_not_break_listing(client, make_user, make_campaign, chain, db):
    creator = make_user(role="creator")
    campaign = make_campaign(creator)
    chain.add_campaign(CAMPAIGN_ADDRESS, raised_eth="1", seconds_left=0)
    chain.withdraw_error = BlockchainError("reverted", status_code=400)

    response = client.get("/api/campaigns")

    assert response.status_code == 200
    db.expire_all()
    assert db.get(Campaign, campaign.id).withdrawal_processed is False


def test_user_campaigns(client, make_user, make_campaign):
    creator = make_user(role="creator")
    other = make_user(uid="uid-2", email="bob@example.com", role="creator")
    make_campaign(creator, title="Mine")
    make_campaign(other, address=OTHER_ADDRESS, title="Theirs")

    response = client.get("/api/campaigns/user", headers=auth("token-uid-1"))

    assert [c["title"] for c in response.json()["campaigns"]] == ["Mine"]


def test_campaign_contributions(client, make_user, make_campaign, chain):
    creator = make_user(role="creator")
    make_user(uid="uid-2", email="bob@example.com", name="Bob")
    make_campaign(creator)
    chain.add_campaign(CAMPAIGN_ADDRESS)

    client.post(
        "/api/blockchain/contribute",
        json={"idToken": "token-uid-2", "campaignAddress": CAMPAIGN_ADDRESS, "amount": "0.1"},
    )
    response = client.get(f"/api/campaigns/{CAMPAIGN_ADDRESS}/contributions")

    [row] = response.json()["contributions"]
    assert row["userName"] == "Bob"
    assert row["txHash"] == "0xcontribute"


def test_campaign_contributions_unknown_address(client):
    response = client.get(f"/api/campaigns/{OTHER_ADDRESS}/contributions")
    assert response.status_code == 404


# Creation

def create_payload(**overrides):
    payload = {
        "idToken": "token-uid-1",
        "title": "Clean water",
        "description": "Wells for the village",
        "goalInEth": "1.5",
        "durationInDays": 0.5,
    }
    payload.update(overrides)
    return payload


def test_create_campaign(client, make_user, chain, db):
    make_user(role="creator")

    response = client.post("/api/blockchain/create-campaign", json=create_payload())

    assert response.status_code == 200
    body = response.json()
    assert body["campaignAddress"] == CAMPAIGN_ADDRESS
    assert body["transactionHash"] == "0xcreate"
    assert body["gasUsed"] == "21000"

    campaign = db.query(Campaign).one()
    assert campaign.creator_id == "uid-1"
    assert campaign.target == Decimal("1.5")
    deadline = campaign.deadline.replace(tzinfo=timezone.utc)
    expected = datetime.now(timezone.utc) + timedelta(hours=12)
    assert abs((deadline - expected).total_seconds()) < 60


def test_create_campaign_requires_creator_role(client, make_user, chain):
    make_user(role="user")

    response = client.post("/api/blockchain/create-campaign", json=create_payload())

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Only creators can create campaigns"
    assert chain.calls == []


def test_create_campaign_creates_missing_wallet(client, make_user, db):
    make_user(role="creator", wallet=False)

    response = client.post("/api/blockchain/create-campaign", json=create_payload())

    assert response.status_code == 200
    db.expire_all()
    assert db.get(User, "uid-1").wallet_address is not None


def test_create_campaign_without_address_is_not_saved(client, make_user, chain, db):
    make_user(role="creator")
    chain.next_campaign_address = None

    response = client.post("/api/blockchain/create-campaign", json=create_payload())

    assert response.status_code == 502
    assert response.json()["error"]["details"] == {"transactionHash": "0xcreate"}
    assert db.query(Campaign).count() == 0


@pytest.mark.parametrize("overrides", [
    {"goalInEth": "0"},
    {"durationInDays": 0},
    {"durationInDays": 400},
    {"title": ""},
])
def test_create_campaign_validation(client, make_user, overrides):
    make_user(role="creator")
    response = client.post("/api/blockchain/create-campaign", json=create_payload(**overrides))
    assert response.status_code == 422


def test_estimate_create_campaign(client, make_user):
    make_user(role="creator")

    response = client.post(
        "/api/blockchain/estimate-create-campaign",
        json={"idToken": "token-uid-1", "goalInEth": "1", "durationInDays": 30},
    )

    assert response.json()["gasLimit"] == "100000"


# Expired campaign processing

def test_process_expired_requires_cron_secret(client):
    response = client.post("/api/campaigns/process-expired", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_process_expired_statuses(client, make_user, make_campaign, chain, db):
    creator = make_user(role="creator")
    addresses = ["0x" + f"{i:02d}" * 20 for i in range(1, 6)]
    make_campaign(creator, address=addresses[0], title="funded", deadline=past(5))
    make_campaign(creator, address=addresses[1], title="short", deadline=past(4))
    make_campaign(creator, address=addresses[2], title="done", deadline=past(3))
    make_campaign(creator, address=addresses[3], title="unreadable", deadline=past(2))
    make_campaign(creator, address=addresses[4], title="extended", deadline=past(1))
    make_campaign(creator, address=OTHER_ADDRESS, title="running")

    chain.add_campaign(addresses[0], raised_eth="2", seconds_left=0)
    chain.add_campaign(addresses[1], raised_eth="0.1", seconds_left=0)
    chain.add_campaign(addresses[2], raised_eth="1", seconds_left=0, withdrawn=True)
    chain.add_campaign(addresses[4], seconds_left=600)

    response = client.post("/api/campaigns/process-expired", headers=CRON_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 5
    statuses = {r["title"]: r["status"] for r in body["results"]}
    assert statuses == {
        "funded": "withdrawn",
        "short": "goal_not_reached",
        "done": "already_withdrawn",
        "extended": "not_expired",
    }
    funded = body["results"][0]
    assert funded["txHash"] == "0xwithdraw"
    assert funded["amount"] == str(2 * 10**18)

    db.expire_all()
    processed = {c.title for c in db.query(Campaign).filter(Campaign.withdrawal_processed.is_(True))}
    assert processed == {"funded", "short", "done"}


def test_process_expired_reports_withdrawal_failure(client, make_user, make_campaign, chain):
    creator = make_user(role="creator")
    make_campaign(creator, deadline=past())
    chain.add_campaign(CAMPAIGN_ADDRESS, raised_eth="1", seconds_left=0)
    chain.withdraw_error = BlockchainError("Smart contract rejected the withdrawal", status_code=400)

    [result] = client.post("/api/campaigns/process-expired", headers=CRON_HEADERS).json()["results"]

    assert result["status"] == "withdrawal_failed"
    assert "rejected" in result["error"]


def test_cron_calls_process_expired(client, monkeypatch):
    async def fake_trigger():
        return {"success": True, "processed": 0, "results": []}

    monkeypatch.setattr(campaigns_router, "trigger_process_expired", fake_trigger)

    response = client.get("/api/cron/process-campaigns")

    assert response.status_code == 200
    assert response.json()["result"]["processed"] == 0
    assert "timestamp" in response.json()


def test_cron_reports_failure(client, monkeypatch):
    async def failing_trigger():
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(campaigns_router, "trigger_process_expired", failing_trigger)

    response = client.post("/api/cron/process-campaigns")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "CRON_FAILED"


def test_status_uses_row_deadline_when_chain_has_ended(client, make_user, make_campaign, chain):
    creator = make_user(role="creator")
    make_campaign(creator)
    chain.add_campaign(CAMPAIGN_ADDRESS, raised_eth="0.1", seconds_left=0)

    [campaign] = client.get("/api/campaigns").json()["campaigns"]

    assert campaign["timeRemaining"] > 0
    assert campaign["status"] == "active"


def test_status_inactive_when_both_deadlines_passed(client, make_user, make_campaign, chain):
    creator = make_user(role="creator")
    make_campaign(creator, deadline=past())
    chain.add_campaign(CAMPAIGN_ADDRESS, raised_eth="0.1", seconds_left=0)

    [campaign] = client.get("/api/campaigns").json()["campaigns"]

    assert campaign["status"] == "inactive"


def test_process_expired_survives_unexpected_error(client, make_user, make_campaign, chain):
    creator = make_user(role="creator")
    make_campaign(creator, address=CAMPAIGN_ADDRESS, title="broken", deadline=past(2))
    make_campaign(creator, address=OTHER_ADDRESS, title="short", deadline=past(1))
    chain.add_campaign(CAMPAIGN_ADDRESS, raised_eth="1", seconds_left=0)
    chain.add_campaign(OTHER_ADDRESS, raised_eth="0.1", seconds_left=0)
    chain.withdraw_error = RuntimeError("rpc client crashed")

    response = client.post("/api/campaigns/process-expired", headers=CRON_HEADERS)

    assert response.status_code == 200
    broken, short = response.json()["results"]
    assert broken["status"] == "processing_error"
    assert broken["error"] == "rpc client crashed"
    assert short["status"] == "goal_not_reached"
