import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from core.database import Base


# 18 fractional digits, same precision as wei
ETH_AMOUNT = Numeric(36, 18)


def _uuid() -> str:
    return str(uuid.uuid4())


# USER

class User(Base):
    __tablename__ = "users"

    # identity provider uid
    id = Column(String, primary_key=True, index=True)
    firebase_id = Column(String, unique=True, index=True, nullable=True)

    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    image = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")  # user | creator

    wallet_address = Column(String, nullable=True)
    private_key = Column(Text, nullable=True)  # iv_hex:cipher_hex

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    campaigns = relationship(
        "Campaign",
        back_populates="creator",
        foreign_keys="Campaign.creator_id",
    )

    contributions = relationship(
        "Contribution",
        back_populates="user",
    )


# CAMPAIGN

class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=_uuid)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    target = Column(ETH_AMOUNT, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False)

    contract_address = Column(String, unique=True, index=True, nullable=False)
    creator_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)

    withdrawal_processed = Column(Boolean, nullable=False, default=False)
    withdrawal_tx_hash = Column(String, nullable=True)
    withdrawal_processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    creator = relationship(
        "User",
        back_populates="campaigns",
        foreign_keys=[creator_id],
    )

    contributions = relationship(
        "Contribution",
        back_populates="campaign",
    )


# CONTRIBUTIONS

class Contribution(Base):
    __tablename__ = "contributions"

    id = Column(String(36), primary_key=True, default=_uuid)

    amount = Column(ETH_AMOUNT, nullable=False)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), index=True, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    tx_hash = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    campaign = relationship(
        "Campaign",
        back_populates="contributions",
    )

    user = relationship(
        "User",
        back_populates="contributions",
    )
