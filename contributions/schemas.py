from decimal import Decimal

from pydantic import BaseModel, Field

CONTRACT_ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"


class ContributeRequest(BaseModel):
    idToken: str = Field(min_length=1)
    campaignAddress: str = Field(pattern=CONTRACT_ADDRESS_PATTERN)
    amount: Decimal = Field(gt=0)


class RefundRequest(BaseModel):
    idToken: str = Field(min_length=1)
    campaignAddress: str = Field(pattern=CONTRACT_ADDRESS_PATTERN)


class TransactionResponse(BaseModel):
    success: bool
    transactionHash: str
    gasUsed: str
    message: str
