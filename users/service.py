import logging

from sqlalchemy.orm import Session

from core.config import settings
from core.crypto import generate_wallet
from core.models import User

logger = logging.getLogger(__name__)


def ensure_wallet(db: Session, user: User) -> User:
    """Give ``user`` a custodial wallet if the row has no encrypted key yet."""
    if user.private_key:
        return user

    logger.info("User %s missing encrypted private key - creating wallet", user.id)
    user.wallet_address, user.private_key = generate_wallet(settings.ENCRYPTION_KEY)
    db.commit()
    db.refresh(user)
    logger.info("Wallet created for user %s: %s", user.id, user.wallet_address)
    return user


def upsert_user(db: Session, claims: dict, role: str) -> User:
    """Create or update the row for a verified identity, keyed by email."""
    uid = claims["uid"]
    email = claims["email"]

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(id=uid, email=email)
        db.add(user)

    user.firebase_id = uid
    user.name = claims.get("name") or user.name or ""
    user.image = claims.get("picture") or user.image or ""
    user.role = role

    if not user.wallet_address or not user.private_key:
        user.wallet_address, user.private_key = generate_wallet(settings.ENCRYPTION_KEY)
        logger.info("Generated wallet %s for %s", user.wallet_address, email)

    db.commit()
    db.refresh(user)
    return user


def user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "image": user.image,
        "role": user.role,
        "walletAddress": user.wallet_address,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }
