import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from blockchain.service import BlockchainService, get_blockchain_service
from campaigns.service import maybe_auto_withdraw
from contributions.schemas import ContributeRequest, RefundRequest, TransactionResponse
from core.auth import TokenVerifier, get_token_claims, get_token_verifier, require_user
from core.database import get_db
from core.errors import ErrorCode, ErrorMessage, bad_request
from core.exceptions import BlockchainError
from core.models import Campaign, Contribution
from core.rate_limit import TRANSACTION_LIMIT, limiter
from users.service import ensure_wallet

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Contributions"])


def _settle_if_expired(db: Session, chain: BlockchainService, campaign_address: str) -> None:
    try:
        chain_data = chain.get_campaign_data(campaign_address)
    except BlockchainError as e:
        logger.warning("Campaign validation failed but allowing contribution: %s (%s)", campaign_address, e.message)
        return

    campaign = db.query(Campaign).filter_by(contract_address=campaign_address).first()
    if campaign:
        maybe_auto_withdraw(db, chain, campaign, chain_data)


def _record_contribution(db: Session, campaign_address: str, user_id: str, amount, tx_hash: str) -> None:
    try:
        campaign = db.query(Campaign).filter_by(contract_address=campaign_address).first()
        if not campaign:
            logger.warning("Campaign not found in database for address: %s", campaign_address)
            return

        db.add(Contribution(
            amount=amount,
            campaign_id=campaign.id,
            user_id=user_id,
            tx_hash=tx_hash,
        ))
        db.commit()
        logger.info("Contribution recorded: campaign=%s user=%s amount=%s tx=%s", campaign.id, user_id, amount, tx_hash)
    except SQLAlchemyError:
        # the on-chain transfer already happened
        db.rollback()
        logger.exception("Failed to record contribution %s in database", tx_hash)


@router.post("/blockchain/contribute", response_model=TransactionResponse)
@limiter.limit(TRANSACTION_LIMIT)
def contribute(
    request: Request,
    payload: ContributeRequest,
    db: Session = Depends(get_db),
    verifier: TokenVerifier = Depends(get_token_verifier),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    claims = verifier.verify(payload.idToken)
    user = ensure_wallet(db, require_user(db, claims))
    user_id, wallet_address, private_key = user.id, user.wallet_address, user.private_key

    balance = chain.get_wallet_balance(wallet_address)
    if balance < payload.amount:
        raise bad_request(ErrorCode.INSUFFICIENT_BALANCE, ErrorMessage.INSUFFICIENT_BALANCE)

    _settle_if_expired(db, chain, payload.campaignAddress)

    result = chain.contribute(payload.campaignAddress, private_key, payload.amount)

    _record_contribution(db, payload.campaignAddress, user_id, payload.amount, result.transaction_hash)

    return {
        "success": True,
        "transactionHash": result.transaction_hash,
        "gasUsed": str(result.gas_used),
        "message": "Contribution successful!",
    }


@router.post("/blockchain/refund", response_model=TransactionResponse)
@limiter.limit(TRANSACTION_LIMIT)
def refund(
    request: Request,
    payload: RefundRequest,
    db: Session = Depends(get_db),
    verifier: TokenVerifier = Depends(get_token_verifier),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    claims = verifier.verify(payload.idToken)
    user = require_user(db, claims)
    if not user.private_key:
        raise bad_request(ErrorCode.WALLET_NOT_FOUND, ErrorMessage.WALLET_NOT_FOUND)

    result = chain.refund(payload.campaignAddress, user.private_key)

    return {
        "success": True,
        "transactionHash": result.transaction_hash,
        "gasUsed": str(result.gas_used),
        "message": "Refund successful!",
    }


@router.get("/contributions/user")
def list_user_contributions(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    user = require_user(db, claims)

    rows = (
        db.query(Contribution, Campaign.title, Campaign.contract_address)
        .join(Campaign, Contribution.campaign_id == Campaign.id)
        .filter(Contribution.user_id == user.id)
        .order_by(Contribution.created_at.desc())
        .all()
    )

    return {
        "success": True,
        "contributions": [
            {
                "id": c.id,
                "amount": str(c.amount),
                "campaignId": c.campaign_id,
                "campaignTitle": title,
                "campaignAddress": address,
                "txHash": c.tx_hash,
                "createdAt": c.created_at.isoformat() if c.created_at else None,
            }
            for c, title, address in rows
        ],
    }
