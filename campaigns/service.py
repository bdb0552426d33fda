import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from blockchain.service import BlockchainService, CampaignChainData
from core.errors import ErrorCode
from core.exceptions import AppException, BlockchainError
from core.models import Campaign, Contribution, User

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def should_auto_withdraw(campaign: Campaign, chain_data: CampaignChainData | None) -> bool:
    return bool(
        chain_data
        and not chain_data.is_active
        and chain_data.is_successful
        and not chain_data.withdrawn
        and not campaign.withdrawal_processed
    )


def _mark_processed(campaign: Campaign, tx_hash: str | None = None) -> None:
    campaign.withdrawal_processed = True
    if tx_hash:
        campaign.withdrawal_tx_hash = tx_hash
        campaign.withdrawal_processed_at = datetime.now(timezone.utc)


def _creator_key(db: Session, campaign: Campaign) -> str:
    creator = db.query(User).filter_by(id=campaign.creator_id).first()
    if not creator or not creator.private_key:
        raise AppException(
            status_code=404,
            code=ErrorCode.WALLET_NOT_FOUND,
            message="Creator wallet not found or not set up",
        )
    return creator.private_key


def _release_claim(db: Session, campaign: Campaign) -> None:
    try:
        campaign.withdrawal_processed = False
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not release withdrawal claim on %s", campaign.id)


def maybe_auto_withdraw(
    db: Session,
    chain: BlockchainService,
    campaign: Campaign,
    chain_data: CampaignChainData | None,
) -> str | None:
    """
    Withdraw an ended, successful campaign to its creator the first time any
    request touches it. Best effort: failures are logged and None returned.
    """
    if not should_auto_withdraw(campaign, chain_data):
        return None

    logger.info("Auto-withdrawal triggered for successful campaign: %s", campaign.title)

    address = campaign.contract_address

    try:
        # claim the row under lock, send after the lock is released
        locked = (
            db.query(Campaign)
            .filter_by(id=campaign.id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not locked or locked.withdrawal_processed:
            db.rollback()
            return None

        creator_key = _creator_key(db, locked)
        locked.withdrawal_processed = True
        db.commit()
    except AppException as e:
        db.rollback()
        logger.warning("Auto-withdrawal skipped for %s: %s", address, e.message)
        return None
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Auto-withdrawal could not claim %s", address)
        return None

    try:
        result = chain.withdraw_campaign_funds(address, creator_key)
    except AppException as e:
        logger.warning("Auto-withdrawal failed for %s: %s", address, e.message)
        _release_claim(db, locked)
        return None

    try:
        _mark_processed(locked, result.transaction_hash)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Auto-withdrawal %s could not be recorded for %s", result.transaction_hash, address)
        return None

    if result.already_withdrawn:
        logger.info("Campaign %s was already withdrawn on-chain", campaign.contract_address)
    else:
        logger.info("Auto-withdrawal successful! TX: %s", result.transaction_hash)
    return result.transaction_hash


def contribution_stats(db: Session, campaign_id: str) -> tuple[int, Decimal]:
    count, total = (
        db.query(func.count(Contribution.id), func.coalesce(func.sum(Contribution.amount), 0))
        .filter(Contribution.campaign_id == campaign_id)
        .one()
    )
    return int(count or 0), Decimal(str(total or 0))


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def campaign_row(campaign: Campaign) -> dict:
    return {
        "id": campaign.id,
        "title": campaign.title,
        "description": campaign.description,
        "target": str(campaign.target),
        "deadline": _iso(campaign.deadline),
        "contractAddress": campaign.contract_address,
        "creatorId": campaign.creator_id,
        "isActive": campaign.is_active,
        "withdrawalProcessed": campaign.withdrawal_processed,
        "withdrawalTxHash": campaign.withdrawal_tx_hash,
        "withdrawalProcessedAt": _iso(campaign.withdrawal_processed_at),
        "createdAt": _iso(campaign.created_at),
    }


def enrich_campaign(db: Session, chain: BlockchainService, campaign: Campaign, fallback_creator: str | None = None) -> dict:
    chain_data = None
    chain_error = None
    try:
        chain_data = chain.get_campaign_data(campaign.contract_address)
    except BlockchainError as e:
        logger.warning("Failed to fetch blockchain data for %s: %s", campaign.contract_address, e.message)
        chain_error = e.message

    count, db_total = contribution_stats(db, campaign.id)

    maybe_auto_withdraw(db, chain, campaign, chain_data)

    if chain_data and chain_data.time_remaining:
        time_remaining = chain_data.time_remaining
    else:
        deadline = as_utc(campaign.deadline)
        time_remaining = max(0, int((deadline - datetime.now(timezone.utc)).total_seconds())) if deadline else 0

    total_raised = chain_data.total_contributed_eth if chain_data else db_total
    goal_amount = chain_data.goal_eth if chain_data else Decimal(str(campaign.target))
    progress = float(total_raised / goal_amount * 100) if goal_amount else 0.0

    # the row deadline is set after mining, so it can outlive the chain one
    status = "active" if (chain_data and chain_data.is_active) or time_remaining > 0 else "inactive"

    return {
        **campaign_row(campaign),
        "address": campaign.contract_address,
        "goal": str(campaign.target),
        "creator": campaign.creator_id or fallback_creator or "Unknown",
        "blockchain": chain_data.as_dict() if chain_data else None,
        "blockchainError": chain_error,
        "status": status,
        "progress": progress,
        "timeRemaining": time_remaining,
        "totalRaised": str(total_raised),
        "goalAmount": str(goal_amount),
        "totalContributed": str(total_raised),
        "contributionCount": count,
        "withdrawn": chain_data.withdrawn if chain_data else False,
        "isSuccessful": chain_data.is_successful if chain_data else False,
    }


def _process_one(db: Session, chain: BlockchainService, campaign: Campaign, chain_data: CampaignChainData) -> dict:
    base = {"campaignId": campaign.id, "title": campaign.title}

    if chain_data.time_remaining > 0:
        return {**base, "status": "not_expired", "timeRemaining": chain_data.time_remaining}

    if not chain_data.is_successful:
        _mark_processed(campaign)
        db.commit()
        return {
            **base,
            "status": "goal_not_reached",
            "totalRaised": str(chain_data.total_contributed),
            "goal": str(chain_data.goal),
        }

    if chain_data.withdrawn:
        _mark_processed(campaign)
        db.commit()
        return {**base, "status": "already_withdrawn"}

    try:
        result = chain.withdraw_campaign_funds(campaign.contract_address, _creator_key(db, campaign))
    except BlockchainError as e:
        logger.warning("Withdrawal failed for %s: %s", campaign.contract_address, e.message)
        return {**base, "status": "withdrawal_failed", "error": e.message}
    except AppException as e:
        logger.error("Error during withdrawal for %s: %s", campaign.contract_address, e.message)
        return {**base, "status": "withdrawal_error", "error": e.message}

    _mark_processed(campaign, result.transaction_hash)
    db.commit()
    logger.info("Withdrawal successful! TX: %s", result.transaction_hash)
    return {
        **base,
        "status": "withdrawn",
        "txHash": result.transaction_hash,
        "amount": str(chain_data.total_contributed),
    }


def process_expired_campaigns(db: Session, chain: BlockchainService) -> tuple[int, list[dict]]:
    """Settle every campaign whose deadline passed and that was not processed yet."""
    now = datetime.now(timezone.utc)
    campaigns = (
        db.query(Campaign)
        .filter(Campaign.deadline < now)
        .filter(or_(Campaign.withdrawal_processed.is_(None), Campaign.withdrawal_processed.is_(False)))
        .order_by(Campaign.deadline.asc())
        .all()
    )
    logger.info("Found %s potentially expired campaigns to process", len(campaigns))

    results = []
    for campaign in campaigns:
        try:
            chain_data = chain.get_campaign_data(campaign.contract_address)
        except BlockchainError as e:
            logger.warning("Could not fetch blockchain data for %s: %s", campaign.contract_address, e.message)
            continue

        try:
            results.append(_process_one(db, chain, campaign, chain_data))
        except Exception as e:
            db.rollback()
            logger.exception("Error processing campaign %s", campaign.id)
            results.append({
                "campaignId": campaign.id,
                "title": campaign.title,
                "status": "processing_error",
                "error": str(e),
            })

    logger.info("Processing complete: %s", ", ".join(f"{r['title']}: {r['status']}" for r in results))
    return len(campaigns), results
