import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from blockchain.service import GAS_RESERVE_ETH, BlockchainService, get_blockchain_service
from core.auth import find_user, get_token_claims
from core.database import get_db
from core.errors import ErrorCode, ErrorMessage, bad_request, not_found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/balance")
def get_balance(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    user = find_user(db, claims)
    if not user or not user.wallet_address:
        raise not_found(ErrorCode.WALLET_NOT_FOUND, ErrorMessage.WALLET_NOT_FOUND)

    balance = chain.get_wallet_balance(user.wallet_address)

    return {
        "success": True,
        "balance": str(balance),
        "walletAddress": user.wallet_address,
    }


@router.get("/check-balance")
def check_balance(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
    chain: BlockchainService = Depends(get_blockchain_service),
):
    user = find_user(db, claims)
    if not user:
        raise not_found(ErrorCode.USER_NOT_FOUND, ErrorMessage.USER_NOT_FOUND)
    if not user.private_key:
        raise bad_request(ErrorCode.WALLET_NOT_FOUND, "User has no private key")

    # derived from the stored key so a mismatched address column shows up
    balance = chain.get_wallet_balance_from_key(user.private_key)
    logger.info("Balance check for %s: %s ETH", user.wallet_address, balance)

    return {
        "success": True,
        "balance": str(balance),
        "walletAddress": user.wallet_address,
        "hasEnoughForGas": balance > GAS_RESERVE_ETH,
    }
