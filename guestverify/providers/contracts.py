"""
Capabilities the engine consumes. Any object with these coroutine methods can
stand in for a provider (the httpx client below, or a fake in tests).
"""
from typing import Any, Dict, Optional, Protocol

from guestverify.providers.schemas import (
    BackgroundCheckResponse,
    BackgroundStatusResponse,
    DocumentVerificationResponse,
    PhoneChallengeResponse,
    PhoneCodeResponse,
)
from guestverify.store.models import ImageUpload


class IdentityProvider(Protocol):
    async def verify_document(
        self, document_image: ImageUpload, selfie_image: ImageUpload, user_id: Optional[str]
    ) -> DocumentVerificationResponse: ...


class PhoneProvider(Protocol):
    async def request_phone_challenge(self, phone_number: str, user_id: Optional[str]) -> PhoneChallengeResponse: ...

    async def verify_phone_code(self, code: str, challenge_id: str, user_id: Optional[str]) -> PhoneCodeResponse: ...


class BackgroundCheckProvider(Protocol):
    async def initiate_background_check(self, user_data: Dict[str, Any]) -> BackgroundCheckResponse: ...

    async def check_background_status(self, check_id: str) -> BackgroundStatusResponse: ...


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...
