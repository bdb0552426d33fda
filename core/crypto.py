import logging
import os
import re

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from eth_account import Account
from web3 import Web3

from core.errors import ErrorCode, ErrorMessage
from core.exceptions import AppException

logger = logging.getLogger(__name__)

IV_LENGTH = 16  # AES block size
_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")
_PRIVATE_KEY = re.compile(r"^0x[0-9a-fA-F]{64}$")


class LegacyFormatError(ValueError):
    pass


def _cipher(key_hex: str, iv: bytes) -> Cipher:
    return Cipher(algorithms.AES(bytes.fromhex(key_hex)), modes.CBC(iv))


def encrypt_data(text: str, key_hex: str) -> str:
    """AES-256-CBC encrypt ``text``; returns ``iv_hex:cipher_hex``."""
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(text.encode("utf-8")) + padder.finalize()

    encryptor = _cipher(key_hex, iv).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()
    return iv.hex() + ":" + encrypted.hex()


def decrypt_data(payload: str, key_hex: str) -> str:
    if ":" not in payload:
        raise LegacyFormatError(
            "Cannot decrypt legacy format. Please re-authenticate to generate new keys."
        )

    iv_hex, _, encrypted_hex = payload.partition(":")
    decryptor = _cipher(key_hex, bytes.fromhex(iv_hex)).decryptor()
    padded = decryptor.update(bytes.fromhex(encrypted_hex)) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")


def require_encryption_key(key_hex: str | None) -> str:
    if not key_hex:
        raise AppException(
            status_code=500,
            code=ErrorCode.WALLET_KEY_ERROR,
            message="Encryption key not configured",
        )
    if not _HEX_KEY.match(key_hex):
        raise AppException(
            status_code=500,
            code=ErrorCode.WALLET_KEY_ERROR,
            message="Invalid encryption key format. Must be 64 hex characters.",
        )
    return key_hex


def generate_wallet(key_hex: str | None) -> tuple[str, str]:
    """Create a fresh custodial wallet; returns (address, encrypted private key)."""
    key_hex = require_encryption_key(key_hex)
    account = Account.create()
    private_key = Web3.to_hex(account.key)
    return account.address, encrypt_data(private_key, key_hex)


def decrypt_private_key(encrypted_key: str, key_hex: str | None) -> str:
    key_hex = require_encryption_key(key_hex)
    try:
        private_key = decrypt_data(encrypted_key, key_hex)
    except (ValueError, UnicodeDecodeError) as e:
        logger.error("Wallet key decryption failed: %s", e)
        raise AppException(
            status_code=500,
            code=ErrorCode.WALLET_KEY_ERROR,
            message=ErrorMessage.WALLET_KEY_ERROR,
        )

    if not _PRIVATE_KEY.match(private_key):
        logger.error("Decrypted wallet key has an unexpected format")
        raise AppException(
            status_code=500,
            code=ErrorCode.WALLET_KEY_ERROR,
            message=ErrorMessage.WALLET_KEY_ERROR,
        )

    return private_key
