from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DocumentStatus = Literal["verified", "failed"]
CheckStatus = Literal["pending", "processing", "complete", "completed", "failed"]

FINAL_CHECK_STATUSES = ("complete", "completed", "failed")


class _ProviderModel(BaseModel):
    # Vendors add fields freely; findings or PII beyond these are never kept
    model_config = ConfigDict(extra="ignore")


class DocumentVerificationResponse(_ProviderModel):
    status: DocumentStatus
    checkId: Optional[str] = None


class PhoneChallengeResponse(_ProviderModel):
    challengeId: str
    expiresInSeconds: Optional[int] = Field(default=None, ge=0)


class PhoneCodeResponse(_ProviderModel):
    verified: bool = False


class BackgroundCheckResponse(_ProviderModel):
    checkId: str
    status: CheckStatus = "pending"
    passed: Optional[bool] = None


class BackgroundStatusResponse(_ProviderModel):
    status: CheckStatus = "pending"
    passed: Optional[bool] = None
