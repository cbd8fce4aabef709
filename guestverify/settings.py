import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    # "memory" keeps persistence in-process; "redis" uses REDIS_URL
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()
    STORAGE_PREFIX: str = os.getenv("STORAGE_PREFIX", "guestverify")

    # Session lifetime and snapshot cadence
    SESSION_TTL_HOURS: float = float(os.getenv("SESSION_TTL_HOURS", "24"))
    PERSIST_DEBOUNCE_SEC: float = float(os.getenv("PERSIST_DEBOUNCE_SEC", "0.5"))

    # Phone OTP
    OTP_DEFAULT_TTL_SEC: int = int(os.getenv("OTP_DEFAULT_TTL_SEC", "120"))
    OTP_MAX_ATTEMPTS: int = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))

    # Background check offer policy + polling
    BG_CHECK_SCORE_THRESHOLD: int = int(os.getenv("BG_CHECK_SCORE_THRESHOLD", "70"))
    BG_CHECK_GUEST_THRESHOLD: int = int(os.getenv("BG_CHECK_GUEST_THRESHOLD", "5"))
    BG_CHECK_POLL_INTERVAL_SEC: float = float(os.getenv("BG_CHECK_POLL_INTERVAL_SEC", "3.0"))
    BG_CHECK_MAX_POLLS: int = int(os.getenv("BG_CHECK_MAX_POLLS", "10"))

    # Trust levels: ascending score floors for manual_review, review, verified
    TRUST_LEVEL_THRESHOLDS: str = os.getenv("TRUST_LEVEL_THRESHOLDS", "50,70,85")
    # Optional JSON, e.g. {"BackgroundCheck": {"Verified": 8, "Failed": -25}}
    TRUST_CHANNEL_ADJUSTMENTS: str = os.getenv("TRUST_CHANNEL_ADJUSTMENTS", "")

    # Uploads
    MAX_IMAGE_BYTES: int = int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))

    # UI notifications (0 disables auto-dismiss)
    NOTIFICATION_TIMEOUT_SEC: float = float(os.getenv("NOTIFICATION_TIMEOUT_SEC", "5"))

    # Identity / phone / background-check provider gateway
    PROVIDER_BASE_URL: str = os.getenv("PROVIDER_BASE_URL", "").rstrip("/")
    PROVIDER_API_KEY: str = os.getenv("PROVIDER_API_KEY", "")
    PROVIDER_TIMEOUT_SEC: float = float(os.getenv("PROVIDER_TIMEOUT_SEC", "8.0"))
    PROVIDER_MAX_RETRIES: int = int(os.getenv("PROVIDER_MAX_RETRIES", "2"))

    # Security & Privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

settings = Settings()
