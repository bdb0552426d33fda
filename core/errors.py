from fastapi import status
from core.exceptions import AppException


class ErrorCode:
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"

    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    EMAIL_REQUIRED = "EMAIL_REQUIRED"

    USER_NOT_FOUND = "USER_NOT_FOUND"
    NOT_A_CREATOR = "NOT_A_CREATOR"

    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    WALLET_KEY_ERROR = "WALLET_KEY_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"

    CAMPAIGN_NOT_FOUND = "CAMPAIGN_NOT_FOUND"
    CAMPAIGN_ADDRESS_UNKNOWN = "CAMPAIGN_ADDRESS_UNKNOWN"

    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    TRANSACTION_WOULD_FAIL = "TRANSACTION_WOULD_FAIL"
    CONTRACT_REJECTED = "CONTRACT_REJECTED"
    CONTRACT_NOT_FOUND = "CONTRACT_NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    WITHDRAWAL_NOT_ALLOWED = "WITHDRAWAL_NOT_ALLOWED"

    CRON_FAILED = "CRON_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorMessage:
    INVALID_TOKEN = "Invalid token"
    AUTH_HEADER_MISSING = "Authorization header missing"
    UNAUTHORIZED = "Unauthorized"

    EMAIL_REQUIRED = "Email is required"

    USER_NOT_FOUND = "User not found"
    NOT_A_CREATOR = "Only creators can create campaigns"

    WALLET_NOT_FOUND = "User wallet not found"
    WALLET_KEY_ERROR = "Unable to decrypt wallet key. Please contact support."
    INSUFFICIENT_BALANCE = "Insufficient balance"

    CAMPAIGN_NOT_FOUND = "Campaign not found"
    CAMPAIGN_ADDRESS_UNKNOWN = "Campaign transaction confirmed but the campaign address could not be determined"

    INTERNAL_ERROR = "Internal server error"


def bad_request(code: str, message: str, details: dict | None = None):
    return AppException(
        status_code=status.HTTP_400_BAD_REQUEST,
        code=code,
        message=message,
        details=details
    )


def unauthorized(message: str = ErrorMessage.UNAUTHORIZED, code: str = ErrorCode.AUTH_UNAUTHORIZED):
    return AppException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        code=code,
        message=message
    )


def forbidden(code: str, message: str):
    return AppException(
        status_code=status.HTTP_403_FORBIDDEN,
        code=code,
        message=message
    )


def not_found(code: str, message: str):
    return AppException(
        status_code=status.HTTP_404_NOT_FOUND,
        code=code,
        message=message
    )
