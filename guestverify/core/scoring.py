"""
Trust Score Aggregator
----------------------
compute_result() is a pure function of (form answers, channel results, config):
the reference date is a required argument and no clock is read. There is no
incremental state. Identical inputs always produce an identical score, level
and adjustment list.

Adjustment order is fixed: form rules in FORM_RULES order, then channels in
Channel declaration order. Only non-zero deltas are listed.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from guestverify.core.validation import flatten_form, parse_date
from guestverify.observability.logging import log
from guestverify.settings import settings
from guestverify.store.models import (
    FORM_STEPS,
    Adjustment,
    Channel,
    ChannelResult,
    ChannelStatus,
    TrustLevel,
    TrustScoreResult,
)

MIN_SCORE = 0
MAX_SCORE = 100


@dataclass(frozen=True)
class ChannelDeltas:
    verified: int = 0
    failed: int = 0
    # PlatformProfile only: verified with a few (not many) reviews
    partial: int = 0


DEFAULT_CHANNEL_DELTAS: Dict[Channel, ChannelDeltas] = {
    Channel.DOCUMENT_SELFIE: ChannelDeltas(verified=5, failed=-10),
    Channel.PHONE_OTP: ChannelDeltas(verified=3, failed=-5),
    Channel.BACKGROUND_CHECK: ChannelDeltas(verified=5, failed=-20),
    Channel.PLATFORM_PROFILE: ChannelDeltas(verified=3, failed=0, partial=1),
}

CHANNEL_REASONS: Dict[Channel, Dict[str, str]] = {
    Channel.DOCUMENT_SELFIE: {"verified": "Government ID and selfie verified", "failed": "ID and selfie verification failed"},
    Channel.PHONE_OTP: {"verified": "Phone number verified", "failed": "Phone verification failed"},
    Channel.BACKGROUND_CHECK: {"verified": "Verified background check", "failed": "Background check not passed"},
    Channel.PLATFORM_PROFILE: {"verified": "Well-reviewed on platform", "partial": "Has platform reviews", "failed": "Platform profile rejected"},
}

DEFAULT_LEVEL_THRESHOLDS: Tuple[Tuple[int, TrustLevel], ...] = (
    (50, TrustLevel.MANUAL_REVIEW),
    (70, TrustLevel.REVIEW),
    (85, TrustLevel.VERIFIED),
)

LEVEL_MESSAGES: Dict[TrustLevel, str] = {
    TrustLevel.VERIFIED: (
        "You're officially verified! Your trust badge is valid for 12 months and can be "
        "shared with any participating host."
    ),
    TrustLevel.REVIEW: (
        "You're almost there! You're verified, but a few traits (e.g., local booking or large "
        "group) may lead hosts to ask additional questions."
    ),
    TrustLevel.MANUAL_REVIEW: (
        "We're completing a review of your profile. This typically takes 24-48 hours."
    ),
    TrustLevel.NOT_ELIGIBLE: (
        "We're unable to approve your verification at this time. You may reapply in 90 days "
        "or contact support."
    ),
}


# ---------------------------------------------------------------------------
# Form rules: (rule id, reason, default delta, predicate over flat form + today)
# ---------------------------------------------------------------------------
def _num(form: Mapping[str, Any], key: str) -> float:
    try:
        return float(form.get(key) or 0)
    except (TypeError, ValueError):
        return 0.0


def days_until(check_in: Any, today: date) -> Optional[int]:
    d = parse_date(check_in)
    return (d - today).days if d else None


def stay_nights(check_in: Any, check_out: Any) -> Optional[int]:
    a, b = parse_date(check_in), parse_date(check_out)
    if not a or not b:
        return None
    return (b - a).days


def _last_minute(form, today, cfg) -> bool:
    d = days_until(form.get("checkInDate"), today)
    return d is not None and d <= cfg.last_minute_days


def _long_stay(form, today, cfg) -> bool:
    n = stay_nights(form.get("checkInDate"), form.get("checkOutDate"))
    return n is not None and n > cfg.long_stay_nights


FormPredicate = Callable[[Mapping[str, Any], date, "ScoringConfig"], bool]

FORM_RULES: List[Tuple[str, str, int, FormPredicate]] = [
    ("special_occasion", "Special occasion/birthday", -5,
     lambda f, t, c: f.get("stayPurpose") == "Special Occasion"),
    ("large_group", "6+ guests", -3,
     lambda f, t, c: _num(f, "totalGuests") > c.large_group_threshold),
    ("non_overnight_visitors", "Additional (non-overnight) visitors", -2,
     lambda f, t, c: _num(f, "nonOvernightGuests") > 0),
    ("near_home", "Booking within 20 miles of home", -3,
     lambda f, t, c: bool(f.get("travelingNearHome"))),
    ("first_time_guest", "First-time STR guest", -5,
     lambda f, t, c: not f.get("usedSTRBefore")),
    ("last_minute", "Booking within 48 hours of check-in", -3, _last_minute),
    ("children_under_12", "Group includes minors under 12", 1,
     lambda f, t, c: _num(f, "childrenUnder12") > 0),
    ("long_stay", "Booking for over 7 nights", 2, _long_stay),
    ("previous_stay_links", "Previous stays provided with links", 3,
     lambda f, t, c: bool(f.get("usedSTRBefore")) and bool(str(f.get("previousStayLinks") or "").strip())),
]


@dataclass(frozen=True)
class ScoringConfig:
    base_score: int = 100
    level_thresholds: Tuple[Tuple[int, TrustLevel], ...] = DEFAULT_LEVEL_THRESHOLDS
    channel_deltas: Mapping[Channel, ChannelDeltas] = field(default_factory=lambda: dict(DEFAULT_CHANNEL_DELTAS))
    form_deltas: Mapping[str, int] = field(default_factory=dict)
    well_reviewed_min_reviews: int = 6
    large_group_threshold: int = 5
    last_minute_days: int = 2
    long_stay_nights: int = 7
    bg_check_score_threshold: int = 70
    bg_check_guest_threshold: int = 5

    @classmethod
    def from_settings(cls, s=settings) -> "ScoringConfig":
        return cls(
            level_thresholds=parse_level_thresholds(getattr(s, "TRUST_LEVEL_THRESHOLDS", "")),
            channel_deltas=parse_channel_deltas(getattr(s, "TRUST_CHANNEL_ADJUSTMENTS", "")),
            bg_check_score_threshold=int(getattr(s, "BG_CHECK_SCORE_THRESHOLD", 70) or 70),
            bg_check_guest_threshold=int(getattr(s, "BG_CHECK_GUEST_THRESHOLD", 5) or 5),
        )


def parse_level_thresholds(raw: str) -> Tuple[Tuple[int, TrustLevel], ...]:
    """'50,70,85' -> floors for manual_review, review, verified. Must be strictly ascending."""
    if not raw or not str(raw).strip():
        return DEFAULT_LEVEL_THRESHOLDS
    try:
        floors = [int(x.strip()) for x in str(raw).split(",") if x.strip()]
        levels = [TrustLevel.MANUAL_REVIEW, TrustLevel.REVIEW, TrustLevel.VERIFIED]
        if len(floors) != len(levels) or any(b <= a for a, b in zip(floors, floors[1:])):
            raise ValueError("expected three strictly ascending thresholds")
        if floors[0] < MIN_SCORE or floors[-1] > MAX_SCORE:
            raise ValueError("thresholds must lie within 0..100")
        return tuple(zip(floors, levels))
    except ValueError as e:
        log(event="scoring_config_invalid", setting="TRUST_LEVEL_THRESHOLDS", error=str(e))
        return DEFAULT_LEVEL_THRESHOLDS


def parse_channel_deltas(raw: str) -> Dict[Channel, ChannelDeltas]:
    deltas = dict(DEFAULT_CHANNEL_DELTAS)
    if not raw or not str(raw).strip():
        return deltas
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        for name, override in data.items():
            channel = Channel(name)
            base = deltas[channel]
            deltas[channel] = ChannelDeltas(
                verified=int(override.get("Verified", base.verified)),
                failed=int(override.get("Failed", base.failed)),
                partial=int(override.get("Partial", base.partial)),
            )
    except (ValueError, TypeError, AttributeError) as e:
        log(event="scoring_config_invalid", setting="TRUST_CHANNEL_ADJUSTMENTS", error=str(e))
        return dict(DEFAULT_CHANNEL_DELTAS)
    return deltas


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------
ChannelResultsInput = Union[
    Mapping[Union[Channel, str], Union[ChannelResult, Mapping[str, Any]]],
    Iterable[ChannelResult],
    None,
]


def normalize_form(form_data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Accept either per-step FormStepData or an already flat field map."""
    form_data = form_data or {}
    if any(k in FORM_STEPS for k in form_data.keys()):
        return flatten_form(form_data)
    return dict(form_data)


def normalize_channels(channel_results: ChannelResultsInput) -> Dict[Channel, ChannelResult]:
    out: Dict[Channel, ChannelResult] = {}
    if not channel_results:
        return out
    items = channel_results.values() if isinstance(channel_results, Mapping) else channel_results
    for item in items:
        result = item if isinstance(item, ChannelResult) else ChannelResult.from_dict(item)
        out[result.channel] = result
    return out


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
def _channel_adjustment(result: Optional[ChannelResult], config: ScoringConfig) -> Optional[Adjustment]:
    if result is None:
        return None
    ch = result.channel
    deltas = config.channel_deltas.get(ch, ChannelDeltas())
    reasons = CHANNEL_REASONS[ch]

    if result.status == ChannelStatus.FAILED:
        return Adjustment(reasons["failed"], deltas.failed)
    if result.status != ChannelStatus.VERIFIED:
        return None

    if ch == Channel.PLATFORM_PROFILE:
        try:
            reviews = int(result.payload.get("reviewCount") or 0)
        except (TypeError, ValueError):
            reviews = 0
        if reviews >= config.well_reviewed_min_reviews:
            return Adjustment(reasons["verified"], deltas.verified)
        if reviews > 0:
            return Adjustment(reasons["partial"], deltas.partial)
        return None

    return Adjustment(reasons["verified"], deltas.verified)


def level_for_score(score: int, config: Optional[ScoringConfig] = None) -> TrustLevel:
    config = config or ScoringConfig()
    level = TrustLevel.NOT_ELIGIBLE
    for floor, candidate in sorted(config.level_thresholds, key=lambda x: x[0]):
        if score >= floor:
            level = candidate
    return level


def compute_result(
    form_data: Optional[Mapping[str, Any]],
    channel_results: ChannelResultsInput,
    config: Optional[ScoringConfig] = None,
    *,
    today: date,
    computed_at: int = 0,
) -> TrustScoreResult:
    config = config or ScoringConfig()
    form = normalize_form(form_data)
    channels = normalize_channels(channel_results)

    adjustments: List[Adjustment] = []
    for rule_id, reason, default_delta, predicate in FORM_RULES:
        if predicate(form, today, config):
            delta = int(config.form_deltas.get(rule_id, default_delta))
            if delta:
                adjustments.append(Adjustment(reason, delta))

    for ch in Channel:
        adj = _channel_adjustment(channels.get(ch), config)
        if adj is not None and adj.delta:
            adjustments.append(adj)

    total = config.base_score + sum(a.delta for a in adjustments)
    score = max(MIN_SCORE, min(MAX_SCORE, total))

    return TrustScoreResult(
        score=score,
        level=level_for_score(score, config),
        adjustments=adjustments,
        computedAt=int(computed_at),
    )


def result_message(level: TrustLevel) -> str:
    return LEVEL_MESSAGES.get(level, "Thank you for completing your verification.")


def score_range(score: int, config: Optional[ScoringConfig] = None) -> str:
    config = config or ScoringConfig()
    floors = sorted(f for f, _ in config.level_thresholds)
    upper = MAX_SCORE
    for floor in reversed(floors):
        if score >= floor:
            return f"{floor}-{upper}"
        upper = floor - 1
    return f"Below {floors[0]}" if floors else f"{MIN_SCORE}-{MAX_SCORE}"


_RECOMMENDATIONS: Dict[TrustLevel, Tuple[str, str]] = {
    TrustLevel.VERIFIED: (
        "This guest meets recommended trust standards.",
        "ID verified. Platform account confirmed. No safety concerns flagged.",
    ),
    TrustLevel.REVIEW: (
        "This guest is verified but has traits that may require additional context.",
        "ID verified. Some booking characteristics suggest reviewing context.",
    ),
    TrustLevel.MANUAL_REVIEW: (
        "This guest is pending manual review. You'll be notified when complete.",
        "Guest has initiated verification process. Review in progress.",
    ),
    TrustLevel.NOT_ELIGIBLE: (
        "This guest does not currently meet eligibility requirements.",
        "Not eligible at this time.",
    ),
}


def build_host_summary(
    result: TrustScoreResult,
    form_data: Optional[Mapping[str, Any]],
    channel_results: ChannelResultsInput,
    config: Optional[ScoringConfig] = None,
    *,
    today: date,
) -> Dict[str, Any]:
    """Host-facing neutral summary. Carries flags and statuses only, no personal data."""
    config = config or ScoringConfig()
    form = normalize_form(form_data)
    channels = normalize_channels(channel_results)

    def _status(ch: Channel) -> ChannelStatus:
        r = channels.get(ch)
        return r.status if r else ChannelStatus.NOT_STARTED

    bg = _status(Channel.BACKGROUND_CHECK)
    recommendation, summary = _RECOMMENDATIONS[result.level]
    return {
        "trustLevel": result.level.key,
        "scoreRange": score_range(result.score, config),
        "identityVerified": _status(Channel.DOCUMENT_SELFIE) == ChannelStatus.VERIFIED,
        "phoneVerified": _status(Channel.PHONE_OTP) == ChannelStatus.VERIFIED,
        "platformVerified": _status(Channel.PLATFORM_PROFILE) == ChannelStatus.VERIFIED,
        "backgroundCheckStatus": "completed" if bg in (ChannelStatus.VERIFIED, ChannelStatus.FAILED) else "not_completed",
        "flags": {
            "localBooking": bool(form.get("travelingNearHome")),
            "highGuestCount": _num(form, "totalGuests") > config.large_group_threshold,
            "noSTRHistory": not form.get("usedSTRBefore"),
            "lastMinuteBooking": _last_minute(form, today, config),
        },
        "recommendation": recommendation,
        "summary": summary,
    }
