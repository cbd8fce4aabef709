import asyncio
import base64
import random
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as SchemaError

from guestverify.core.errors import ChannelError
from guestverify.observability.logging import log
from guestverify.providers.schemas import (
    BackgroundCheckResponse,
    BackgroundStatusResponse,
    DocumentVerificationResponse,
    PhoneChallengeResponse,
    PhoneCodeResponse,
)
from guestverify.settings import settings
from guestverify.store.models import ImageUpload

M = TypeVar("M", bound=BaseModel)

# Status codes worth another attempt; everything else 4xx fails fast
RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


def _encode_image(image: ImageUpload) -> Dict[str, Any]:
    return {
        "filename": image.filename,
        "contentType": image.contentType or "application/octet-stream",
        "data": base64.b64encode(image.data or b"").decode("ascii"),
    }


class ProviderClient:
    """
    One async HTTP client for every verification vendor endpoint.

    POST {PROVIDER_BASE_URL}/verify-id
    POST {PROVIDER_BASE_URL}/verify-phone/request
    POST {PROVIDER_BASE_URL}/verify-phone/verify
    POST {PROVIDER_BASE_URL}/background-check
    GET  {PROVIDER_BASE_URL}/background-check/{checkId}

    Every failure leaves as ChannelError; channel managers turn that into a
    Failed result.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        timeout_sec: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff_sec: float = 0.2,
    ):
        self.base_url = (base_url if base_url is not None else settings.PROVIDER_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PROVIDER_API_KEY
        self.timeout_sec = float(timeout_sec if timeout_sec is not None else settings.PROVIDER_TIMEOUT_SEC)
        self.max_retries = int(max_retries if max_retries is not None else settings.PROVIDER_MAX_RETRIES)
        self.backoff_sec = float(backoff_sec)
        self._client = httpx.AsyncClient(timeout=self.timeout_sec, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _headers(self) -> dict:
        h = {"Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    async def _call(self, method: str, path: str, model: Type[M], payload: Optional[Dict[str, Any]] = None) -> M:
        if not self.base_url:
            raise ChannelError("PROVIDER_BASE_URL is not set", retryable=False)

        url = f"{self.base_url}/{path.lstrip('/')}"
        attempts = max(1, self.max_retries)
        last_err: Optional[ChannelError] = None

        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.request(method, url, headers=self._headers(), json=payload)
                resp.raise_for_status()
                return model.model_validate(resp.json())
            except httpx.TimeoutException as e:
                last_err = ChannelError(f"provider timeout: {e}", retryable=True)
            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                last_err = ChannelError(f"provider returned {code}", status_code=code, retryable=code in RETRYABLE_STATUS)
            except httpx.HTTPError as e:
                last_err = ChannelError(f"provider unreachable: {e}", retryable=True)
            except (SchemaError, ValueError) as e:
                # Malformed body or schema mismatch; retrying will not fix it
                last_err = ChannelError(f"malformed provider response: {str(e)[:200]}", retryable=False)

            if not last_err.retryable or attempt >= attempts:
                break
            log(event="provider_retry", path=path, attempt=attempt,
                statusCode=last_err.status_code, error=str(last_err)[:200])
            await asyncio.sleep(self.backoff_sec + random.uniform(0.0, self.backoff_sec / 2))

        raise last_err

    # -------------------------------------------------------------- endpoints
    async def verify_document(self, document_image: ImageUpload, selfie_image: ImageUpload,
                              user_id: Optional[str]) -> DocumentVerificationResponse:
        return await self._call("POST", "verify-id", DocumentVerificationResponse, {
            "userId": user_id,
            "idImageData": _encode_image(document_image),
            "selfieImageData": _encode_image(selfie_image),
        })

    async def request_phone_challenge(self, phone_number: str, user_id: Optional[str]) -> PhoneChallengeResponse:
        return await self._call("POST", "verify-phone/request", PhoneChallengeResponse,
                                {"userId": user_id, "phoneNumber": phone_number})

    async def verify_phone_code(self, code: str, challenge_id: str, user_id: Optional[str]) -> PhoneCodeResponse:
        return await self._call("POST", "verify-phone/verify", PhoneCodeResponse,
                                {"userId": user_id, "verificationId": challenge_id, "code": code})

    async def initiate_background_check(self, user_data: Dict[str, Any]) -> BackgroundCheckResponse:
        return await self._call("POST", "background-check", BackgroundCheckResponse, {"userData": user_data})

    async def check_background_status(self, check_id: str) -> BackgroundStatusResponse:
        return await self._call("GET", f"background-check/{check_id}", BackgroundStatusResponse)
