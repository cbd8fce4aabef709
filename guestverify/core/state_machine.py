# Channel status + phase constants and the only legal status edges.
from guestverify.core.errors import StateError
from guestverify.store.models import Channel, ChannelStatus

NOT_STARTED = ChannelStatus.NOT_STARTED
PENDING = ChannelStatus.PENDING
VERIFIED = ChannelStatus.VERIFIED
FAILED = ChannelStatus.FAILED
EXPIRED = ChannelStatus.EXPIRED

# Channels whose Pending/Verified results can lapse into Expired
TIME_BOXED_CHANNELS = frozenset({Channel.PHONE_OTP})

_TRANSITIONS = {
    NOT_STARTED: {PENDING},
    PENDING: {VERIFIED, FAILED},
    VERIFIED: set(),
    FAILED: set(),
    EXPIRED: set(),
}

_EXPIRY_SOURCES = {PENDING, VERIFIED}


# Phone OTP phases
# Interaction Surface: phone entry form
OTP_IDLE = "Idle"
# Interaction Surface: spinner while the provider issues a challenge
OTP_REQUESTING = "Requesting"
# Interaction Surface: code entry + countdown
OTP_AWAITING_CODE = "AwaitingCode"
# Interaction Surface: spinner while the provider checks the code
OTP_VERIFYING = "Verifying"
OTP_VERIFIED = "Verified"
OTP_FAILED = "Failed"
# Interaction Surface: countdown hit zero; only resend is offered
OTP_EXPIRED = "Expired"


# Document + selfie phases
DOC_INPUT_READY = "InputReady"
DOC_SUBMITTING = "Submitting"
DOC_VERIFIED = "Verified"

# Background check phases
BG_IDLE = "Idle"
BG_RUNNING = "Running"
BG_DONE = "Done"

# Platform profile phases
PROFILE_IDLE = "Idle"
PROFILE_RECORDED = "Recorded"


def is_legal(channel: Channel, current: ChannelStatus, target: ChannelStatus) -> bool:
    if target is EXPIRED:
        return channel in TIME_BOXED_CHANNELS and current in _EXPIRY_SOURCES
    return target in _TRANSITIONS.get(current, set())


def assert_transition(channel: Channel, current: ChannelStatus, target: ChannelStatus) -> None:
    """
    INVARIANT: statuses only move NotStarted -> Pending -> {Verified | Failed},
    plus Pending|Verified -> Expired on time-boxed channels.
    """
    if not is_legal(channel, current, target):
        raise StateError(f"illegal transition for {channel.value}: {current.value} -> {target.value}")
