from datetime import date

import pytest

from guestverify.core.errors import StateError
from guestverify.core.validation import (
    STEP_FIELDS,
    flatten_form,
    format_phone_number,
    is_step_valid,
    is_valid_phone,
    validate,
    validate_all_steps,
)

TODAY = date(2025, 6, 1)
CTX = {"today": TODAY}

VALID_IDENT = {
    "name": "Jordan Lee",
    "email": "jordan@example.com",
    "phone": "(555) 123-4567",
    "address": "12 Harbor Street, Portland ME",
    "airbnbProfile": "https://www.airbnb.com/users/show/123",
}

VALID_BOOKING = {
    "platform": "airbnb",
    "listingLink": "https://www.airbnb.com/rooms/42",
    "checkInDate": "2025-06-10",
    "checkOutDate": "2025-06-14",
}

VALID_INTENT = {"stayPurpose": "Vacation", "totalGuests": 2}

VALID_AGREEMENT = {"agreeToRules": True, "agreeNoParties": True, "understandFlagging": True}


def test_every_schema_field_is_present_in_error_map():
    for step, fields in STEP_FIELDS.items():
        errors = validate(step, {}, CTX)
        assert set(errors.keys()) == set(fields)


def test_valid_steps_have_only_empty_messages():
    assert is_step_valid(validate("user_identification", VALID_IDENT, CTX))
    assert is_step_valid(validate("booking_info", VALID_BOOKING, CTX))
    assert is_step_valid(validate("stay_intent", VALID_INTENT, CTX))
    assert is_step_valid(validate("agreement", VALID_AGREEMENT, CTX))


def test_is_step_valid_iff_all_empty():
    assert is_step_valid({"a": "", "b": ""})
    assert is_step_valid({})
    assert not is_step_valid({"a": "", "b": "Required"})
    assert not is_step_valid({"a": " "})


def test_unknown_step_is_state_error():
    with pytest.raises(StateError):
        validate("payment", {}, CTX)


@pytest.mark.parametrize("email", ["plainaddress", "a@b", "a b@c.com", "@example.com"])
def test_bad_email_rejected(email):
    errors = validate("user_identification", {**VALID_IDENT, "email": email}, CTX)
    assert errors["email"] == "Please enter a valid email address"


@pytest.mark.parametrize("phone,ok", [
    ("5551234567", True),
    ("555-123-4567", True),
    ("15551234567", True),
    ("25551234567", False),
    ("+44 20 7946 0958", True),
    ("+123", False),
    ("12345", False),
    ("555-CALL-NOW", False),
])
def test_phone_patterns(phone, ok):
    assert is_valid_phone(phone) is ok


def test_phone_formatting():
    assert format_phone_number("5551234567") == "(555) 123-4567"
    assert format_phone_number("15551234567") == "+1 (555) 123-4567"
    assert format_phone_number("+44 20 7946 0958") == "+442079460958"
    assert format_phone_number("") == ""


def test_identification_requires_a_verification_route():
    data = {k: v for k, v in VALID_IDENT.items() if k != "airbnbProfile"}
    errors = validate("user_identification", data, CTX)
    assert errors["verification"].startswith("Please provide at least one verification method")

    assert validate("user_identification", {**data, "consentToBackgroundCheck": True}, CTX)["verification"] == ""
    assert validate("user_identification", data, {**CTX, "isVerified": True})["verification"] == ""


def test_profile_link_must_be_url():
    errors = validate("user_identification", {**VALID_IDENT, "airbnbProfile": "airbnb.com/me"}, CTX)
    assert errors["verification"] == "Airbnb profile must be a valid URL"


def test_checkout_must_follow_checkin():
    errors = validate("booking_info", {**VALID_BOOKING, "checkOutDate": "2025-06-10"}, CTX)
    assert errors["checkOutDate"] == "Check-out date must be after check-in date"

    errors = validate("booking_info", {**VALID_BOOKING, "checkOutDate": "2025-06-09"}, CTX)
    assert errors["checkOutDate"] == "Check-out date must be after check-in date"


def test_checkin_window():
    far_past = validate("booking_info", {**VALID_BOOKING, "checkInDate": "2025-04-01", "checkOutDate": "2025-04-03"}, CTX)
    assert "in the past" in far_past["checkInDate"]

    far_future = validate("booking_info", {**VALID_BOOKING, "checkInDate": "2026-07-01", "checkOutDate": "2026-07-03"}, CTX)
    assert "1 year in the future" in far_future["checkInDate"]


@pytest.mark.parametrize("guests,ok", [(1, True), (20, True), (0, False), (21, False), (2.5, False)])
def test_guest_count_bounds(guests, ok):
    errors = validate("stay_intent", {**VALID_INTENT, "totalGuests": guests}, CTX)
    assert (errors["totalGuests"] == "") is ok


def test_children_cannot_exceed_guests():
    errors = validate("stay_intent", {**VALID_INTENT, "totalGuests": 2, "childrenUnder12": 3}, CTX)
    assert errors["childrenUnder12"] == "Number of children cannot exceed total guests"


def test_zip_required_when_near_home():
    errors = validate("stay_intent", {**VALID_INTENT, "travelingNearHome": True}, CTX)
    assert errors["zipCode"] == "ZIP code is required when staying near home"

    ok = validate("stay_intent", {**VALID_INTENT, "travelingNearHome": True, "zipCode": "04101-1234"}, CTX)
    assert ok["zipCode"] == ""

    bad = validate("stay_intent", {**VALID_INTENT, "zipCode": "4101"}, CTX)
    assert bad["zipCode"].startswith("Please enter a valid ZIP code")


def test_other_purpose_needs_description():
    errors = validate("stay_intent", {**VALID_INTENT, "stayPurpose": "Other", "otherPurpose": "ab"}, CTX)
    assert errors["otherPurpose"] == "Purpose description must be at least 3 characters"


def test_previous_stay_links_checked_only_for_returning_guests():
    data = {**VALID_INTENT, "previousStayLinks": "not a link"}
    assert validate("stay_intent", data, CTX)["previousStayLinks"] == ""
    errors = validate("stay_intent", {**data, "usedSTRBefore": True}, CTX)
    assert errors["previousStayLinks"] == "Please provide valid URLs for previous stays"


def test_all_agreements_required():
    errors = validate("agreement", {"agreeToRules": True}, CTX)
    assert errors["agreeToRules"] == ""
    assert errors["agreeNoParties"] != ""
    assert errors["understandFlagging"] != ""


def test_validate_all_steps_counts_errors():
    form = {
        "user_identification": VALID_IDENT,
        "booking_info": VALID_BOOKING,
        "stay_intent": VALID_INTENT,
        "agreement": {"agreeToRules": True},
    }
    report = validate_all_steps(form, CTX)
    assert report["isValid"] is False
    assert report["errorCount"] == 2

    form["agreement"] = VALID_AGREEMENT
    assert validate_all_steps(form, CTX)["isValid"] is True


def test_flatten_form_merges_steps():
    flat = flatten_form({"user_identification": {"name": "A"}, "stay_intent": {"totalGuests": 3}})
    assert flat == {"name": "A", "totalGuests": 3}
