from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


class Channel(str, Enum):
    # Declaration order is the adjustment order used by the aggregator
    DOCUMENT_SELFIE = "DocumentSelfie"
    PHONE_OTP = "PhoneOTP"
    BACKGROUND_CHECK = "BackgroundCheck"
    PLATFORM_PROFILE = "PlatformProfile"


class ChannelStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    PENDING = "Pending"
    VERIFIED = "Verified"
    FAILED = "Failed"
    EXPIRED = "Expired"


class TrustLevel(IntEnum):
    NOT_ELIGIBLE = 0
    MANUAL_REVIEW = 1
    REVIEW = 2
    VERIFIED = 3

    @property
    def key(self) -> str:
        return self.name.lower()


# Ordered form steps
USER_IDENTIFICATION = "user_identification"
BOOKING_INFO = "booking_info"
STAY_INTENT = "stay_intent"
AGREEMENT = "agreement"

FORM_STEPS: List[str] = [USER_IDENTIFICATION, BOOKING_INFO, STAY_INTENT, AGREEMENT]


@dataclass
class Session:
    id: str = ""
    currentStepIndex: int = 0
    createdAt: int = 0   # epoch ms
    expiresAt: int = 0   # epoch ms
    dirty: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChannelResult:
    channel: Channel
    status: ChannelStatus = ChannelStatus.NOT_STARTED
    updatedAt: int = 0
    # Non-sensitive outcome only (pass/fail, check id, counters). Never images or findings.
    payload: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "status": self.status.value,
            "updatedAt": int(self.updatedAt),
            "payload": dict(self.payload),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChannelResult":
        return cls(
            channel=Channel(data["channel"]),
            status=ChannelStatus(data.get("status") or ChannelStatus.NOT_STARTED.value),
            updatedAt=int(data.get("updatedAt") or 0),
            payload=dict(data.get("payload") or {}),
            reason=data.get("reason"),
        )


@dataclass
class OTPChallenge:
    phoneNumber: str
    challengeId: str
    issuedAt: int
    ttlSeconds: int
    remainingSeconds: int
    resendAllowed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Adjustment:
    reason: str
    delta: int

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "delta": self.delta}


@dataclass
class TrustScoreResult:
    score: int
    level: TrustLevel
    adjustments: List[Adjustment] = field(default_factory=list)
    computedAt: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": int(self.score),
            "level": self.level.key,
            "adjustments": [a.to_dict() for a in self.adjustments],
            "computedAt": int(self.computedAt),
        }


@dataclass
class Notification:
    id: str
    message: str
    severity: str = "info"   # info / success / warning / error
    autoExpireAt: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImageUpload:
    """A file handed over by the UI. Only lives in memory until its call completes."""
    filename: str
    data: bytes = b""
    contentType: Optional[str] = None
