class AppException(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class BlockchainError(AppException):
    """A contract call or RPC request that failed on the chain side."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: str = "BLOCKCHAIN_ERROR",
        details: dict | None = None
    ):
        super().__init__(status_code=status_code, code=code, message=message, details=details)
