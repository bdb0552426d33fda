import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = "11" * 32
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["INIT_DB_ON_STARTUP"] = "false"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["CAMPAIGN_FACTORY_ADDRESS"] = "0x" + "ab" * 20
os.environ["CRON_SECRET"] = "test-cron-secret"

import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from blockchain.service import CampaignChainData, TransactionResult, get_blockchain_service, to_wei
from core.auth import get_token_verifier
from core.config import settings
from core.crypto import generate_wallet
from core.database import Base, get_db
from core.errors import ErrorCode, ErrorMessage, unauthorized
from core.exceptions import BlockchainError
from core.models import Campaign, User
from main import app

CAMPAIGN_ADDRESS = "0x" + "12" * 20
OTHER_ADDRESS = "0x" + "34" * 20


class FakeVerifier:
    def __init__(self):
        self.tokens = {}

    def add(self, token, uid, email, **claims):
        self.tokens[token] = {"uid": uid, "email": email, **claims}

    def verify(self, id_token):
        if id_token not in self.tokens:
            raise unauthorized(ErrorMessage.INVALID_TOKEN, ErrorCode.AUTH_INVALID_TOKEN)
        return self.tokens[id_token]


class FakeBlockchainService:
    """In-memory stand-in for the contract client; records every write."""

    def __init__(self):
        self.campaigns = {}
        self.balance = Decimal("1")
        self.calls = []
        self.next_campaign_address = CAMPAIGN_ADDRESS
        self.withdraw_error = None
        self.on_withdraw = None

    def add_campaign(self, address, *, creator="0xCreator", goal_eth="1", raised_eth="0",
                     seconds_left=3600, withdrawn=False):
        now = int(time.time())
        goal, raised = to_wei(goal_eth), to_wei(raised_eth)
        self.campaigns[address] = CampaignChainData(
            address=address,
            creator=creator,
            goal=goal,
            deadline=now + seconds_left,
            total_contributed=raised,
            withdrawn=withdrawn,
            is_active=seconds_left > 0,
            is_successful=raised >= goal,
            time_remaining=max(0, seconds_left),
        )
        return self.campaigns[address]

    def get_campaign_data(self, address):
        if address not in self.campaigns:
            raise BlockchainError(f"No contract deployed at address {address}", status_code=404)
        return self.campaigns[address]

    def get_wallet_balance(self, address):
        return self.balance

    def get_wallet_balance_from_key(self, encrypted_key):
        return self.balance

    def create_campaign(self, encrypted_key, goal_eth, duration_days):
        self.calls.append(("create_campaign", goal_eth, duration_days))
        return TransactionResult(
            transaction_hash="0xcreate",
            gas_used=21000,
            campaign_address=self.next_campaign_address,
        )

    def estimate_create_campaign_gas(self, encrypted_key, goal_eth, duration_days):
        return {"gasLimit": "100000", "gasPrice": "10", "estimatedCost": "0.000000000001"}

    def contribute(self, campaign_address, encrypted_key, amount_eth):
        self.calls.append(("contribute", campaign_address, amount_eth))
        return TransactionResult(transaction_hash="0xcontribute", gas_used=50000, amount=to_wei(amount_eth))

    def withdraw_campaign_funds(self, campaign_address, encrypted_key):
        self.calls.append(("withdraw_campaign_funds", campaign_address))
        if self.on_withdraw:
            self.on_withdraw(campaign_address)
        if self.withdraw_error:
            raise self.withdraw_error
        return TransactionResult(transaction_hash="0xwithdraw", gas_used=30000)

    def refund(self, campaign_address, encrypted_key):
        self.calls.append(("refund", campaign_address))
        return TransactionResult(transaction_hash="0xrefund", gas_used=25000)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def chain():
    return FakeBlockchainService()


@pytest.fixture
def client(engine, verifier, chain):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_verifier] = lambda: verifier
    app.dependency_overrides[get_blockchain_service] = lambda: chain

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db, verifier):
    def _make_user(uid="uid-1", email="alice@example.com", role="user", token=None, wallet=True, name="Alice"):
        address, private_key = generate_wallet(settings.ENCRYPTION_KEY) if wallet else (None, None)
        user = User(
            id=uid,
            firebase_id=uid,
            email=email,
            name=name,
            role=role,
            wallet_address=address,
            private_key=private_key,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        verifier.add(token or f"token-{uid}", uid, email)
        return user

    return _make_user


@pytest.fixture
def make_campaign(db):
    def _make_campaign(creator, address=CAMPAIGN_ADDRESS, title="Save the trees", target="1",
                       deadline=None, **fields):
        campaign = Campaign(
            title=title,
            description="",
            target=Decimal(target),
            deadline=deadline or datetime.now(timezone.utc) + timedelta(days=7),
            contract_address=address,
            creator_id=creator.id,
            **fields,
        )
        db.add(campaign)
        db.commit()
        db.refresh(campaign)
        return campaign

    return _make_campaign


def auth(token):
    return {"Authorization": f"Bearer {token}"}
