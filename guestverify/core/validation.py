"""
Validation Engine
-----------------
One pure function per form step: validate(step, formData, context) -> errorMap.
Every schema field is present in the map: "" means no error, anything else is
a human-readable message. Errors are returned as data, never raised.
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from guestverify.core.errors import StateError
from guestverify.store.models import AGREEMENT, BOOKING_INFO, FORM_STEPS, STAY_INTENT, USER_IDENTIFICATION

STEP_FIELDS: Dict[str, List[str]] = {
    USER_IDENTIFICATION: ["name", "email", "phone", "address", "verification"],
    BOOKING_INFO: ["platform", "listingLink", "checkInDate", "checkOutDate"],
    STAY_INTENT: [
        "stayPurpose", "otherPurpose", "totalGuests", "childrenUnder12",
        "nonOvernightGuests", "zipCode", "previousStayLinks",
    ],
    AGREEMENT: ["agreeToRules", "agreeNoParties", "understandFlagging"],
}

PROFILE_FIELDS = ("airbnbProfile", "vrboProfile", "otherPlatformProfile")

MIN_GUESTS = 1
MAX_GUESTS = 20
MAX_NON_OVERNIGHT = 50
MAX_PREVIOUS_LINKS = 10

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
_PHONE_STRIP_RE = re.compile(r"[\s\-().]")
_PHONE_CHARS_RE = re.compile(r"^\+?\d+$")
_LINK_SPLIT_RE = re.compile(r"[,;\n\r]+")


# ---------------------------------------------------------------------------
# Field access helpers (forms arrive as loosely-typed dicts from the UI)
# ---------------------------------------------------------------------------
def _text(data: Mapping[str, Any], key: str) -> str:
    v = data.get(key) if data else None
    return str(v).strip() if v is not None else ""


def _flag(data: Mapping[str, Any], key: str) -> bool:
    return bool(data.get(key)) if data else False


def _number(data: Mapping[str, Any], key: str, default: float) -> float:
    v = data.get(key) if data else None
    if v is None or v == "":
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _is_whole(n: float) -> bool:
    return float(n).is_integer()


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def is_valid_url(url: str) -> bool:
    if not url or not isinstance(url, str):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def is_valid_phone(raw: str) -> bool:
    """
    US numbers: 10 digits, or 11 digits with a leading 1.
    Anything else must be '+'-prefixed international with 10..15 digits.
    """
    cleaned = _PHONE_STRIP_RE.sub("", (raw or "").strip())
    if not _PHONE_CHARS_RE.match(cleaned):
        return False
    digits = cleaned.lstrip("+")
    if cleaned.startswith("+"):
        return 10 <= len(digits) <= 15
    if len(digits) == 10:
        return True
    return len(digits) == 11 and digits[0] == "1"


def format_phone_number(raw: str) -> str:
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        return ""
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits[0] == "1":
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    return f"+{digits}"


def has_profile_link(data: Mapping[str, Any]) -> bool:
    return any(_text(data, k) for k in PROFILE_FIELDS)


def split_links(raw: str) -> List[str]:
    return [x.strip() for x in _LINK_SPLIT_RE.split(raw or "") if x.strip()]


def _empty(step: str) -> Dict[str, str]:
    return {f: "" for f in STEP_FIELDS[step]}


# ---------------------------------------------------------------------------
# Step validators
# ---------------------------------------------------------------------------
def validate_user_identification(data: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, str]:
    errors = _empty(USER_IDENTIFICATION)

    name = _text(data, "name")
    email = _text(data, "email")
    phone = _text(data, "phone")
    address = _text(data, "address")

    if not name:
        errors["name"] = "Name is required"
    elif len(name) < 2:
        errors["name"] = "Name must be at least 2 characters"
    elif len(name) > 100:
        errors["name"] = "Name must be less than 100 characters"

    if not email:
        errors["email"] = "Email is required"
    elif not is_valid_email(email):
        errors["email"] = "Please enter a valid email address"
    elif len(email) > 254:
        errors["email"] = "Email address is too long"

    if not phone:
        errors["phone"] = "Phone number is required"
    elif not is_valid_phone(phone):
        errors["phone"] = "Please enter a valid phone number"

    if not address:
        errors["address"] = "Address is required"
    elif len(address) < 10:
        errors["address"] = "Please enter a complete address"
    elif len(address) > 200:
        errors["address"] = "Address must be less than 200 characters"

    # At least one identification route: a profile link, consent to a
    # background check, or an already-verified status.
    already_verified = bool(context.get("isVerified"))
    if not has_profile_link(data) and not _flag(data, "consentToBackgroundCheck") and not already_verified:
        errors["verification"] = (
            "Please provide at least one verification method: platform profile link, "
            "consent to background check, or prior verification"
        )

    for key, label in (("airbnbProfile", "Airbnb"), ("vrboProfile", "VRBO"), ("otherPlatformProfile", "Platform")):
        link = _text(data, key)
        if link and not is_valid_url(link):
            errors["verification"] = f"{label} profile must be a valid URL"

    return errors


def validate_booking_info(data: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, str]:
    errors = _empty(BOOKING_INFO)
    today = context.get("today") or date.today()

    if not _text(data, "platform"):
        errors["platform"] = "Please select a booking platform"

    listing = _text(data, "listingLink")
    if not listing:
        errors["listingLink"] = "Listing link is required"
    elif not is_valid_url(listing):
        errors["listingLink"] = "Please enter a valid URL beginning with http:// or https://"
    elif len(listing) > 500:
        errors["listingLink"] = "URL is too long"

    raw_in, raw_out = _text(data, "checkInDate"), _text(data, "checkOutDate")
    check_in, check_out = parse_date(raw_in), parse_date(raw_out)

    if not raw_in:
        errors["checkInDate"] = "Check-in date is required"
    elif check_in is None:
        errors["checkInDate"] = "Please enter a valid check-in date"

    if not raw_out:
        errors["checkOutDate"] = "Check-out date is required"
    elif check_out is None:
        errors["checkOutDate"] = "Please enter a valid check-out date"

    if check_in and check_out:
        if check_out <= check_in:
            errors["checkOutDate"] = "Check-out date must be after check-in date"
        elif (check_out - check_in).days > 365:
            errors["checkOutDate"] = "Stay duration cannot exceed 365 days"

        if (today - check_in).days > 30:
            errors["checkInDate"] = "Check-in date cannot be more than 30 days in the past"
        elif check_in > today + timedelta(days=365):
            errors["checkInDate"] = "Check-in date cannot be more than 1 year in the future"

    return errors


def validate_stay_intent(data: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, str]:
    errors = _empty(STAY_INTENT)

    purpose = _text(data, "stayPurpose")
    other = _text(data, "otherPurpose")
    if not purpose:
        errors["stayPurpose"] = "Please select a purpose for your stay"
    elif purpose == "Other":
        if not other:
            errors["otherPurpose"] = "Please specify your purpose"
        elif len(other) < 3:
            errors["otherPurpose"] = "Purpose description must be at least 3 characters"
        elif len(other) > 200:
            errors["otherPurpose"] = "Purpose description must be less than 200 characters"

    guests = _number(data, "totalGuests", MIN_GUESTS)
    if guests < MIN_GUESTS:
        errors["totalGuests"] = "At least 1 guest is required"
    elif guests > MAX_GUESTS:
        errors["totalGuests"] = f"Maximum {MAX_GUESTS} guests allowed"
    elif not _is_whole(guests):
        errors["totalGuests"] = "Number of guests must be a whole number"

    children = _number(data, "childrenUnder12", 0)
    if children < 0:
        errors["childrenUnder12"] = "Number of children cannot be negative"
    elif children > guests:
        errors["childrenUnder12"] = "Number of children cannot exceed total guests"
    elif not _is_whole(children):
        errors["childrenUnder12"] = "Number of children must be a whole number"

    visitors = _number(data, "nonOvernightGuests", 0)
    if visitors < 0:
        errors["nonOvernightGuests"] = "Number of non-overnight guests cannot be negative"
    elif visitors > MAX_NON_OVERNIGHT:
        errors["nonOvernightGuests"] = f"Maximum {MAX_NON_OVERNIGHT} non-overnight guests allowed"
    elif not _is_whole(visitors):
        errors["nonOvernightGuests"] = "Number of non-overnight guests must be a whole number"

    zip_code = _text(data, "zipCode")
    if _flag(data, "travelingNearHome") and not zip_code:
        errors["zipCode"] = "ZIP code is required when staying near home"
    elif zip_code and not ZIP_RE.match(zip_code):
        errors["zipCode"] = "Please enter a valid ZIP code (e.g., 12345 or 12345-6789)"

    if _flag(data, "usedSTRBefore"):
        links = split_links(_text(data, "previousStayLinks"))
        if any(not is_valid_url(x) for x in links):
            errors["previousStayLinks"] = "Please provide valid URLs for previous stays"
        elif len(links) > MAX_PREVIOUS_LINKS:
            errors["previousStayLinks"] = f"Please provide no more than {MAX_PREVIOUS_LINKS} previous stay links"

    return errors


def validate_agreement(data: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, str]:
    errors = _empty(AGREEMENT)
    if not _flag(data, "agreeToRules"):
        errors["agreeToRules"] = "You must agree to follow property rules and regulations"
    if not _flag(data, "agreeNoParties"):
        errors["agreeNoParties"] = "You must agree to the no unauthorized parties or events policy"
    if not _flag(data, "understandFlagging"):
        errors["understandFlagging"] = "You must acknowledge understanding of the terms and flagging policy"
    return errors


VALIDATORS: Dict[str, Callable[[Mapping[str, Any], Mapping[str, Any]], Dict[str, str]]] = {
    USER_IDENTIFICATION: validate_user_identification,
    BOOKING_INFO: validate_booking_info,
    STAY_INTENT: validate_stay_intent,
    AGREEMENT: validate_agreement,
}


def validate(step: str, form_data: Optional[Mapping[str, Any]], context: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
    fn = VALIDATORS.get(step)
    if fn is None:
        raise StateError(f"unknown form step: {step!r}")
    return fn(form_data or {}, context or {})


def is_step_valid(errors: Mapping[str, str]) -> bool:
    if not isinstance(errors, Mapping):
        return False
    return all(v == "" for v in errors.values())


def validate_all_steps(form_by_step: Mapping[str, Mapping[str, Any]], context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    all_errors = {step: validate(step, (form_by_step or {}).get(step), context) for step in FORM_STEPS}
    return {
        "errors": all_errors,
        "isValid": all(is_step_valid(e) for e in all_errors.values()),
        "errorCount": sum(1 for e in all_errors.values() for v in e.values() if v),
    }


def flatten_form(form_by_step: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
    """Merge per-step field maps into one dict (later steps win on key clashes)."""
    flat: Dict[str, Any] = {}
    for step in FORM_STEPS:
        flat.update((form_by_step or {}).get(step) or {})
    return flat
