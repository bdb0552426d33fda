import logging
from datetime import datetime, timedelta, timezone

import httpx
from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from blockchain.service import BlockchainService, get_blockchain_service
from campaigns.schemas import (
    CreateCampaignRequest,
    EstimateCampaignGasRequest,
    ProcessExpiredResponse,
)
from campaigns.service import campaign_row, enrich_campaign, process_expired_campaigns
from core.auth import TokenVerifier, get_token_claims, get_token_verifier, require_user
from core.config import settings
from core.database import get_db
from core.errors import ErrorCode, ErrorMessage, forbidden, not_found, unauthorized
from core.exceptions import AppException
from core.models import Campaign, Contribution, User
from core.rate_limit import TRANSACTION_LIMIT, limiter
from users.service import ensure_wallet

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Campaigns"])


# List campaigns

@router.get("/campaigns")
def list_campaigns(
    creator: str | None = Query(None),
    db: Session = Depends(get_db),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    query = db.query(Campaign)
    if creator:
        query = query.filter(Campaign.creator_id == creator)
    else:
        query = query.filter(Campaign.is_active.is_(True))

    campaigns = query.order_by(Campaign.created_at.desc()).all()

    return {
        "success": True,
        "campaigns": [enrich_campaign(db, chain, c) for c in campaigns],
    }


@router.get("/campaigns/user")
def list_user_campaigns(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    user = require_user(db, claims)

    campaigns = (
        db.query(Campaign)
        .filter(Campaign.creator_id == user.id)
        .order_by(Campaign.created_at.desc())
        .all()
    )

    return {
        "success": True,
        "campaigns": [
            enrich_campaign(db, chain, c, fallback_creator=user.wallet_address)
            for c in campaigns
        ],
    }


@router.get("/campaigns/{address}/contributions")
def list_campaign_contributions(
    address: str,
    db: Session = Depends(get_db),
):
    campaign = db.query(Campaign).filter_by(contract_address=address).first()
    if not campaign:
        raise not_found(ErrorCode.CAMPAIGN_NOT_FOUND, ErrorMessage.CAMPAIGN_NOT_FOUND)

    rows = (
        db.query(Contribution, User.name)
        .join(User, Contribution.user_id == User.id)
        .filter(Contribution.campaign_id == campaign.id)
        .order_by(Contribution.created_at.desc())
        .all()
    )

    return {
        "success": True,
        "contributions": [
            {
                "id": c.id,
                "amount": str(c.amount),
                "userId": c.user_id,
                "userName": user_name,
                "txHash": c.tx_hash,
                "createdAt": c.created_at.isoformat() if c.created_at else None,
            }
            for c, user_name in rows
        ],
    }


# Create campaign

@router.post("/blockchain/create-campaign")
@limiter.limit(TRANSACTION_LIMIT)
def create_campaign(
    request: Request,
    payload: CreateCampaignRequest,
    db: Session = Depends(get_db),
    verifier: TokenVerifier = Depends(get_token_verifier),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    claims = verifier.verify(payload.idToken)
    user = require_user(db, claims)

    if user.role != "creator":
        raise forbidden(ErrorCode.NOT_A_CREATOR, ErrorMessage.NOT_A_CREATOR)

    user = ensure_wallet(db, user)

    result = chain.create_campaign(user.private_key, payload.goalInEth, payload.durationInDays)

    if not result.campaign_address:
        raise AppException(
            status_code=502,
            code=ErrorCode.CAMPAIGN_ADDRESS_UNKNOWN,
            message=ErrorMessage.CAMPAIGN_ADDRESS_UNKNOWN,
            details={"transactionHash": result.transaction_hash},
        )

    campaign = Campaign(
        title=payload.title,
        description=payload.description,
        target=payload.goalInEth,
        deadline=datetime.now(timezone.utc) + timedelta(days=payload.durationInDays),
        contract_address=result.campaign_address,
        creator_id=user.id,
    )
    db.add(campaign)
    db.commit()
    db.refresh(campaign)
    logger.info("Campaign saved to database: %s", campaign.id)

    return {
        "success": True,
        "campaign": campaign_row(campaign),
        "transactionHash": result.transaction_hash,
        "campaignAddress": result.campaign_address,
        "gasUsed": str(result.gas_used),
        "message": "Campaign created successfully!",
    }


@router.post("/blockchain/estimate-create-campaign")
def estimate_create_campaign(
    payload: EstimateCampaignGasRequest,
    db: Session = Depends(get_db),
    verifier: TokenVerifier = Depends(get_token_verifier),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    claims = verifier.verify(payload.idToken)
    user = ensure_wallet(db, require_user(db, claims))

    estimate = chain.estimate_create_campaign_gas(user.private_key, payload.goalInEth, payload.durationInDays)
    return {"success": True, **estimate}


# Expired campaign processing

@router.post(
    "/campaigns/process-expired",
    response_model=ProcessExpiredResponse,
    response_model_exclude_none=True,
)
def process_expired(
    authorization: str | None = Header(None),
    db: Session = Depends(get_db),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    if authorization != f"Bearer {settings.CRON_SECRET}":
        logger.warning("Unauthorized access to process-expired endpoint")
        raise unauthorized()

    processed, results = process_expired_campaigns(db, chain)
    return {"success": True, "processed": processed, "results": results}


async def trigger_process_expired() -> dict:
    base_url = str(settings.APP_BASE_URL).rstrip("/")

    async with httpx.AsyncClient(timeout=300) as client:
        resp = await client.post(
            f"{base_url}/api/campaigns/process-expired",
            headers={"Authorization": f"Bearer {settings.CRON_SECRET}"},
        )

    return resp.json()


@router.api_route("/cron/process-campaigns", methods=["GET", "POST"])
async def cron_process_campaigns():
    logger.info("Cron job triggered - processing expired campaigns")

    try:
        result = await trigger_process_expired()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("Cron job failed: %s", e)
        raise AppException(
            status_code=500,
            code=ErrorCode.CRON_FAILED,
            message=str(e)[:500],
            details={"timestamp": datetime.now(timezone.utc).isoformat()},
        )

    logger.info("Cron job completed: %s", result)
    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "result": result,
    }
