from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class CreateCampaignRequest(BaseModel):
    idToken: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    goalInEth: Decimal = Field(gt=0)
    # decimals allowed for short test campaigns
    durationInDays: float = Field(gt=0, le=365)


class EstimateCampaignGasRequest(BaseModel):
    idToken: str = Field(min_length=1)
    goalInEth: Decimal = Field(gt=0)
    durationInDays: float = Field(gt=0, le=365)


class ProcessResult(BaseModel):
    campaignId: str
    title: str
    status: str
    txHash: Optional[str] = None
    amount: Optional[str] = None
    error: Optional[str] = None
    totalRaised: Optional[str] = None
    goal: Optional[str] = None
    timeRemaining: Optional[int] = None


class ProcessExpiredResponse(BaseModel):
    success: bool
    processed: int
    results: List[ProcessResult]
