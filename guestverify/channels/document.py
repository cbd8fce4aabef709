import mimetypes
from typing import Any, Mapping, Optional

from guestverify.channels.base import ChannelManager
from guestverify.core import state_machine as sm
from guestverify.core.errors import ValidationError
from guestverify.observability.logging import log
from guestverify.providers.contracts import IdentityProvider
from guestverify.settings import settings
from guestverify.store.models import Channel, ChannelResult, ChannelStatus, ImageUpload

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")


def image_content_type(upload: ImageUpload) -> Optional[str]:
    if upload.contentType:
        return upload.contentType.split(";")[0].strip().lower()
    guessed, _ = mimetypes.guess_type(upload.filename or "")
    return guessed


def validate_image(upload: Optional[ImageUpload], label: str, max_bytes: int) -> None:
    if upload is None or not upload.data:
        raise ValidationError(f"Please upload a {label}", {label: "required"})
    ctype = image_content_type(upload)
    if ctype not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"The {label} must be a JPEG, PNG or WebP image", {label: "type"})
    if len(upload.data) > max_bytes:
        mb = max_bytes / (1024 * 1024)
        raise ValidationError(f"The {label} must be smaller than {mb:g} MB", {label: "size"})


class DocumentSelfieManager(ChannelManager):
    """
    Government ID + selfie check. Images are held here, in memory only, so a
    failed attempt can be resubmitted without uploading again; they are dropped
    once the check passes or the channel is reset.
    """

    channel = Channel.DOCUMENT_SELFIE

    def __init__(self, store, events, scheduler, provider: IdentityProvider, *, max_image_bytes: Optional[int] = None):
        super().__init__(store, events, scheduler)
        self.provider = provider
        self.max_image_bytes = int(max_image_bytes or settings.MAX_IMAGE_BYTES)
        self._document: Optional[ImageUpload] = None
        self._selfie: Optional[ImageUpload] = None

    @property
    def has_images(self) -> bool:
        return self._document is not None and self._selfie is not None

    def _reject(self, err: ValidationError) -> ChannelResult:
        log(event="channel_input_rejected", channel=self.channel.value, fields=err.fields)
        self._set_error(str(err))
        return self.result()

    async def start(self, input: Optional[Mapping[str, Any]] = None) -> ChannelResult:
        input = input or {}
        if self.status() == ChannelStatus.VERIFIED:
            return self.result()

        document = input.get("documentImage") or self._document
        selfie = input.get("selfieImage") or self._selfie

        try:
            validate_image(document, "document image", self.max_image_bytes)
            validate_image(selfie, "selfie", self.max_image_bytes)
        except ValidationError as e:
            return self._reject(e)

        self._document, self._selfie = document, selfie
        gen = self._begin_attempt()
        self._set_error(None)
        self._set_phase(sm.DOC_SUBMITTING)
        self._write_result(ChannelStatus.PENDING, payload={}, new_attempt=True)

        resp = await self._invoke(gen, "verify_document", self.provider.verify_document,
                                  document, selfie, self._user_id())
        if resp is None:
            return self.result()

        if resp.status == "verified":
            self._document = self._selfie = None
            self._set_phase(sm.DOC_VERIFIED)
            return self._write_result(ChannelStatus.VERIFIED, payload={"passed": True, "checkId": resp.checkId})

        self._set_phase(sm.DOC_INPUT_READY)
        return self._write_result(
            ChannelStatus.FAILED,
            payload={"passed": False, "checkId": resp.checkId},
            reason="We couldn't match your ID to your selfie. Please try again.",
        )

    def reset(self) -> None:
        self._document = self._selfie = None
        super().reset()
