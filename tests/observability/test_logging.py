import json
from unittest.mock import patch

from guestverify.observability.logging import log


def _last_line(capsys):
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


@patch("guestverify.observability.logging.settings")
def test_sensitive_fields_are_redacted(mock_settings, capsys):
    mock_settings.ENABLE_PII_REDACTION = True
    log(event="otp_challenge_issued", phoneNumber="5551234567", code="123456", channel="PhoneOTP")

    line = _last_line(capsys)
    assert line["event"] == "otp_challenge_issued"
    assert line["phoneNumber"] == "[REDACTED:10chars]"
    assert line["code"] == "[REDACTED:6chars]"
    assert line["channel"] == "PhoneOTP"
    assert isinstance(line["ts"], int)


@patch("guestverify.observability.logging.settings")
def test_nested_dicts_redacted_one_level(mock_settings, capsys):
    mock_settings.ENABLE_PII_REDACTION = True
    log(event="channel_input_rejected", fields={"email": "a@b.co", "status": "format"},
        formData={"name": "Jordan"})

    line = _last_line(capsys)
    assert line["fields"] == {"email": "[REDACTED:6chars]", "status": "format"}
    assert line["formData"] == {"name": "[REDACTED:6chars]"}


@patch("guestverify.observability.logging.settings")
def test_redaction_can_be_disabled(mock_settings, capsys):
    mock_settings.ENABLE_PII_REDACTION = False
    log(event="debug", email="a@b.co")
    assert _last_line(capsys)["email"] == "a@b.co"


@patch("guestverify.observability.logging.settings")
def test_bytes_and_unserializable_values(mock_settings, capsys):
    mock_settings.ENABLE_PII_REDACTION = True
    log(event="upload", documentImage=b"\x89PNG", payload=object())
    line = _last_line(capsys)
    assert line["documentImage"] == "[REDACTED:4bytes]"
    assert line["payload"].startswith("<object object")
