import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from blockchain.abi import CAMPAIGN_ABI, CAMPAIGN_CREATED_EVENT, CAMPAIGN_FACTORY_ABI
from core.config import settings
from core.crypto import decrypt_private_key
from core.errors import ErrorCode
from core.exceptions import BlockchainError

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

GAS_BUFFER_PERCENT = 120
# kept free on top of a contribution to pay for gas
GAS_RESERVE_ETH = Decimal("0.001")
MAX_DURATION_SECONDS = 365 * 24 * 60 * 60

CHAIN_ERRORS = (Web3Exception, ValueError, OSError)


def to_eth(wei: int) -> Decimal:
    return Decimal(Web3.from_wei(int(wei), "ether"))


def to_wei(amount_eth: Decimal | str | float) -> int:
    return int(Web3.to_wei(Decimal(str(amount_eth)), "ether"))


@dataclass
class CampaignChainData:
    address: str
    creator: str
    goal: int  # wei
    deadline: int  # unix seconds
    total_contributed: int  # wei
    withdrawn: bool
    is_active: bool
    is_successful: bool
    time_remaining: int

    @property
    def goal_eth(self) -> Decimal:
        return to_eth(self.goal)

    @property
    def total_contributed_eth(self) -> Decimal:
        return to_eth(self.total_contributed)

    def as_dict(self) -> dict:
        return {
            "address": self.address,
            "creator": self.creator,
            "goal": str(self.goal),
            "goalEth": str(self.goal_eth),
            "deadline": self.deadline,
            "totalContributed": str(self.total_contributed),
            "totalContributedEth": str(self.total_contributed_eth),
            "withdrawn": self.withdrawn,
            "isActive": self.is_active,
            "isSuccessful": self.is_successful,
            "timeRemaining": self.time_remaining,
        }


@dataclass
class TransactionResult:
    transaction_hash: Optional[str]
    gas_used: int = 0
    campaign_address: Optional[str] = None
    amount: Optional[int] = None  # wei
    creator_address: Optional[str] = None
    already_withdrawn: bool = False


def translate_error(exc: Exception, action: str) -> BlockchainError:
    """Map a web3/RPC failure onto the error surfaced to API clients."""
    message = str(exc)
    lowered = message.lower()

    if "insufficient funds" in lowered:
        return BlockchainError(
            "Insufficient funds for transaction + gas fees. Please add more test ETH from Sepolia faucet.",
            status_code=400,
            code=ErrorCode.INSUFFICIENT_FUNDS,
        )
    if isinstance(exc, ContractLogicError) or "revert" in lowered:
        return BlockchainError(
            f"Smart contract rejected the {action}: {message}",
            status_code=400,
            code=ErrorCode.CONTRACT_REJECTED,
        )
    if isinstance(exc, TimeExhausted):
        return BlockchainError(
            f"The {action} was sent but not confirmed in time",
            status_code=504,
            code=ErrorCode.NETWORK_ERROR,
        )
    if isinstance(exc, OSError) or "network" in lowered or "timeout" in lowered:
        return BlockchainError(
            "Network error: Unable to connect to Sepolia network",
            status_code=503,
            code=ErrorCode.NETWORK_ERROR,
        )
    return BlockchainError(f"The {action} failed: {message}")


@contextmanager
def chain_errors(action: str):
    try:
        yield
    except BlockchainError:
        raise
    except CHAIN_ERRORS as e:
        logger.error("Error during %s: %s", action, e)
        raise translate_error(e, action) from e


class BlockchainService:
    """Server-side client for the CampaignFactory and Campaign contracts."""

    def __init__(
        self,
        rpc_url: str | None,
        factory_address: str | None,
        *,
        fallback_urls: Iterable[str] = (),
        encryption_key: str | None = None,
        rpc_timeout: int = 15,
        receipt_timeout: int = 120,
        web3: Web3 | None = None,
    ) -> None:
        if not (rpc_url or web3) or not factory_address:
            raise BlockchainError(
                "Missing blockchain configuration",
                status_code=503,
                code=ErrorCode.NETWORK_ERROR,
            )

        self.fallback_urls = list(fallback_urls)
        self.encryption_key = encryption_key
        self.rpc_timeout = rpc_timeout
        self.receipt_timeout = receipt_timeout
        self.factory_address = Web3.to_checksum_address(factory_address)

        logger.info(
            "Blockchain service initializing with rpc=%s factory=%s",
            (rpc_url or "<injected>")[:50] + "...",
            self.factory_address,
        )

        self.web3 = web3 or self._make_web3(rpc_url)
        self._bind_factory()

    def _make_web3(self, url: str) -> Web3:
        return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": self.rpc_timeout}))

    def _bind_factory(self) -> None:
        self.factory = self.web3.eth.contract(address=self.factory_address, abi=CAMPAIGN_FACTORY_ABI)

    def _campaign(self, address: str):
        return self.web3.eth.contract(address=address, abi=CAMPAIGN_ABI)

    def _account(self, encrypted_key: str):
        return Account.from_key(decrypt_private_key(encrypted_key, self.encryption_key))

    @staticmethod
    def _checksum(address: str) -> str:
        if not address or not ADDRESS_RE.match(address):
            raise BlockchainError(
                f"Invalid contract address format: {address}",
                status_code=400,
                code=ErrorCode.INVALID_PARAMETERS,
            )
        return Web3.to_checksum_address(address)

    def _has_code(self, address: str) -> bool:
        return len(self.web3.eth.get_code(address)) > 0

    def _is_connected(self, web3: Web3) -> bool:
        try:
            web3.eth.chain_id
            return True
        except CHAIN_ERRORS as e:
            logger.warning("RPC probe failed: %s", e)
            return False

    def ensure_connection(self) -> None:
        if self._is_connected(self.web3):
            return

        logger.warning("Primary RPC failed, trying fallbacks...")
        for url in self.fallback_urls:
            candidate = self._make_web3(url)
            if not self._is_connected(candidate):
                logger.warning("Fallback RPC failed: %s...", url[:30])
                continue

            logger.info("Connected to fallback RPC: %s...", url[:30])
            self.web3 = candidate
            self._bind_factory()
            return

        raise BlockchainError(
            "Unable to connect to any Sepolia RPC endpoint. Please check your network connection.",
            status_code=503,
            code=ErrorCode.NETWORK_ERROR,
        )

    def _fee_params(self) -> dict:
        latest = self.web3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            priority = self.web3.eth.max_priority_fee
            return {"maxFeePerGas": base_fee * 2 + priority, "maxPriorityFeePerGas": priority}
        return {"gasPrice": self.web3.eth.gas_price}

    def _transact(self, account, contract_fn, *, value: int = 0,
                  failure_prefix: str = "Transaction would fail") -> tuple[str, Any]:
        tx_params: dict = {"from": account.address, "value": value}
        try:
            gas = contract_fn.estimate_gas(tx_params)
        except CHAIN_ERRORS as e:
            logger.error("Gas estimation failed: %s", e)
            raise BlockchainError(
                f"{failure_prefix}: {e}",
                status_code=400,
                code=ErrorCode.TRANSACTION_WOULD_FAIL,
            ) from e

        tx_params.update(self._fee_params())
        tx_params["gas"] = gas * GAS_BUFFER_PERCENT // 100
        tx_params["nonce"] = self.web3.eth.get_transaction_count(account.address, "pending")
        tx_params["chainId"] = self.web3.eth.chain_id

        built = contract_fn.build_transaction(tx_params)
        signed = account.sign_transaction(built)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("Transaction sent: %s", Web3.to_hex(tx_hash))

        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        if receipt.get("status") == 0:
            raise BlockchainError(
                f"Transaction {Web3.to_hex(tx_hash)} reverted",
                status_code=400,
                code=ErrorCode.CONTRACT_REJECTED,
            )

        logger.info("Transaction confirmed: %s (gas used %s)", Web3.to_hex(tx_hash), receipt.get("gasUsed"))
        return Web3.to_hex(tx_hash), receipt

    # Reads

    def get_campaign_data(self, address: str) -> CampaignChainData:
        self.ensure_connection()
        checksum = self._checksum(address)

        with chain_errors("campaign lookup"):
            if not self._has_code(checksum):
                raise BlockchainError(
                    f"No contract deployed at address {address}",
                    status_code=404,
                    code=ErrorCode.CONTRACT_NOT_FOUND,
                )

            functions = self._campaign(checksum).functions
            creator = functions.creator().call()
            goal = int(functions.goal().call())
            deadline = int(functions.deadline().call())
            total_contributed = int(functions.totalContributed().call())
            withdrawn = bool(functions.withdrawn().call())

        now = int(time.time())
        return CampaignChainData(
            address=address,
            creator=creator,
            goal=goal,
            deadline=deadline,
            total_contributed=total_contributed,
            withdrawn=withdrawn,
            is_active=now < deadline,
            is_successful=total_contributed >= goal,
            time_remaining=max(0, deadline - now),
        )

    def get_wallet_balance(self, address: str) -> Decimal:
        try:
            self.ensure_connection()
            return to_eth(self.web3.eth.get_balance(Web3.to_checksum_address(address)))
        except (BlockchainError, *CHAIN_ERRORS) as e:
            logger.error("Error fetching wallet balance for %s: %s", address, e)
            return Decimal("0")

    def get_wallet_balance_from_key(self, encrypted_key: str) -> Decimal:
        account = self._account(encrypted_key)
        self.ensure_connection()
        with chain_errors("balance lookup"):
            return to_eth(self.web3.eth.get_balance(account.address))

    # Writes

    def _new_campaign_address(self, receipt) -> Optional[str]:
        try:
            addresses = self.factory.functions.getCampaigns().call()
            if addresses:
                return addresses[-1]
        except CHAIN_ERRORS as e:
            logger.error("Error getting campaign address: %s", e)

        # factory versions that emit CampaignCreated(creator, campaign)
        topic = bytes(Web3.keccak(text=CAMPAIGN_CREATED_EVENT))
        for log in receipt.get("logs", []):
            topics = log.get("topics") or []
            if len(topics) > 2 and bytes(topics[0]) == topic:
                return Web3.to_checksum_address("0x" + bytes(topics[2])[-20:].hex())
        return None

    def create_campaign(self, encrypted_key: str, goal_eth: Decimal, duration_days: float) -> TransactionResult:
        goal_wei = to_wei(goal_eth)
        duration_seconds = round(duration_days * 24 * 60 * 60)

        if goal_wei <= 0:
            raise BlockchainError("Goal must be greater than 0", status_code=400, code=ErrorCode.INVALID_PARAMETERS)
        if duration_seconds <= 0:
            raise BlockchainError("Duration must be greater than 0", status_code=400, code=ErrorCode.INVALID_PARAMETERS)
        if duration_seconds > MAX_DURATION_SECONDS:
            raise BlockchainError("Duration cannot exceed 1 year", status_code=400, code=ErrorCode.INVALID_PARAMETERS)

        self.ensure_connection()
        account = self._account(encrypted_key)
        logger.info(
            "Creating campaign goal=%s wei duration=%ss wallet=%s",
            goal_wei, duration_seconds, account.address,
        )

        with chain_errors("campaign creation"):
            if self.web3.eth.get_balance(account.address) == 0:
                raise BlockchainError(
                    "Insufficient funds: Wallet has no ETH for gas fees. "
                    "Please add some test ETH from Sepolia faucet.",
                    status_code=400,
                    code=ErrorCode.INSUFFICIENT_FUNDS,
                )

            if not self._has_code(self.factory_address):
                raise BlockchainError(
                    "Smart contract not found at the specified address. "
                    "Please verify the contract is deployed on Sepolia.",
                    status_code=503,
                    code=ErrorCode.CONTRACT_NOT_FOUND,
                )

            tx_hash, receipt = self._transact(
                account,
                self.factory.functions.createCampaign(goal_wei, duration_seconds),
                failure_prefix="Transaction would fail during gas estimation",
            )
            campaign_address = self._new_campaign_address(receipt)

        logger.info("Campaign created: address=%s tx=%s", campaign_address, tx_hash)
        return TransactionResult(
            transaction_hash=tx_hash,
            gas_used=int(receipt.get("gasUsed", 0)),
            campaign_address=campaign_address,
        )

    def estimate_create_campaign_gas(self, encrypted_key: str, goal_eth: Decimal, duration_days: float) -> dict:
        try:
            self.ensure_connection()
            account = self._account(encrypted_key)
            fn = self.factory.functions.createCampaign(to_wei(goal_eth), round(duration_days * 24 * 60 * 60))
            gas_limit = int(fn.estimate_gas({"from": account.address}))
            gas_price = int(self.web3.eth.gas_price)
        except (BlockchainError, *CHAIN_ERRORS) as e:
            logger.error("Error estimating gas: %s", e)
            return {"gasLimit": "0", "gasPrice": "0", "estimatedCost": "0"}

        return {
            "gasLimit": str(gas_limit),
            "gasPrice": str(gas_price),
            "estimatedCost": str(to_eth(gas_limit * gas_price)),
        }

    def _log_campaign_state(self, address: str) -> None:
        try:
            data = self.get_campaign_data(address)
        except BlockchainError as e:
            logger.warning("Campaign data validation failed for %s: %s", address, e.message)
            return

        if not data.is_active:
            logger.warning("Campaign %s has ended; the contract may reject contributions", address)

    def contribute(self, campaign_address: str, encrypted_key: str, amount_eth: Decimal) -> TransactionResult:
        checksum = self._checksum(campaign_address)
        self.ensure_connection()
        account = self._account(encrypted_key)
        amount_wei = to_wei(amount_eth)
        logger.info("Starting contribution of %s ETH to %s from %s", amount_eth, checksum, account.address)

        with chain_errors("contribution"):
            balance = to_eth(self.web3.eth.get_balance(account.address))
            if balance < Decimal(str(amount_eth)) + GAS_RESERVE_ETH:
                raise BlockchainError(
                    f"Insufficient balance: {balance} ETH available, need {amount_eth} ETH + gas fees",
                    status_code=400,
                    code=ErrorCode.INSUFFICIENT_FUNDS,
                )

            if not self._has_code(checksum):
                raise BlockchainError(
                    f"Campaign contract not found at address {campaign_address}. "
                    "The contract may not be deployed.",
                    status_code=404,
                    code=ErrorCode.CONTRACT_NOT_FOUND,
                )

            self._log_campaign_state(campaign_address)

            tx_hash, receipt = self._transact(
                account,
                self._campaign(checksum).functions.contribute(),
                value=amount_wei,
            )

        return TransactionResult(
            transaction_hash=tx_hash,
            gas_used=int(receipt.get("gasUsed", 0)),
            amount=amount_wei,
        )

    def withdraw_campaign_funds(self, campaign_address: str, encrypted_key: str) -> TransactionResult:
        """Withdraw an ended, successful campaign with its creator's wallet."""
        self.ensure_connection()
        account = self._account(encrypted_key)
        data = self.get_campaign_data(campaign_address)
        logger.info("Initiating withdrawal for campaign %s with wallet %s", campaign_address, account.address)

        if data.creator.lower() != account.address.lower():
            raise BlockchainError(
                "Wallet address does not match campaign creator",
                status_code=403,
                code=ErrorCode.WITHDRAWAL_NOT_ALLOWED,
            )
        if not data.is_successful:
            raise BlockchainError(
                "Campaign goal was not reached - withdrawal not allowed",
                status_code=400,
                code=ErrorCode.WITHDRAWAL_NOT_ALLOWED,
            )
        if data.is_active:
            raise BlockchainError(
                "Campaign is still active - withdrawal not allowed",
                status_code=400,
                code=ErrorCode.WITHDRAWAL_NOT_ALLOWED,
            )
        if data.withdrawn:
            return TransactionResult(
                transaction_hash=None,
                amount=data.total_contributed,
                creator_address=account.address,
                already_withdrawn=True,
            )

        with chain_errors("withdrawal"):
            tx_hash, receipt = self._transact(
                account,
                self._campaign(self._checksum(campaign_address)).functions.withdraw(),
            )

        return TransactionResult(
            transaction_hash=tx_hash,
            gas_used=int(receipt.get("gasUsed", 0)),
            amount=data.total_contributed,
            creator_address=account.address,
        )

    def refund(self, campaign_address: str, encrypted_key: str) -> TransactionResult:
        checksum = self._checksum(campaign_address)
        self.ensure_connection()
        account = self._account(encrypted_key)

        with chain_errors("refund"):
            tx_hash, receipt = self._transact(account, self._campaign(checksum).functions.refund())

        return TransactionResult(transaction_hash=tx_hash, gas_used=int(receipt.get("gasUsed", 0)))


_blockchain_service: BlockchainService | None = None


def get_blockchain_service() -> BlockchainService:
    """Return a process-wide client so the selected RPC endpoint is reused."""
    global _blockchain_service
    if _blockchain_service is None:
        _blockchain_service = BlockchainService(
            settings.SEPOLIA_RPC_URL,
            settings.CAMPAIGN_FACTORY_ADDRESS,
            fallback_urls=settings.RPC_FALLBACK_URLS,
            encryption_key=settings.ENCRYPTION_KEY,
            rpc_timeout=settings.RPC_TIMEOUT,
            receipt_timeout=settings.RECEIPT_TIMEOUT,
        )
    return _blockchain_service
