import json

import pytest

from chatgate.config.settings import settings
from chatgate.core import audit
from chatgate.core.access_gate import AccessGate, GateDecision
from chatgate.core.errors import (
    AccessDeniedError,
    InvalidRequestError,
    MethodNotAllowedError,
    RateLimitedError,
    ServiceMisconfiguredError,
)
from chatgate.core.rate_limit import InMemoryRateLimiter

_SHAREPOINT = {
    "Origin": "https://contoso.sharepoint.com",
    "Referer": "https://contoso.sharepoint.com/sites/support/Home.aspx",
    "User-Agent": "Mozilla/5.0",
}


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _gate(now: float = 1_735_689_600.0) -> tuple[AccessGate, _Clock]:
    clock = _Clock(now)
    limiter = InMemoryRateLimiter(window_seconds=settings.rate_limit_window_seconds, clock=clock)
    return AccessGate(rate_limiter=limiter, clock=clock), clock


def test_preflight_bypasses_every_check():
    gate, _ = _gate()
    original = settings.upstream_api_key
    settings.upstream_api_key = ""
    try:
        assert gate.check_request("OPTIONS", {"Origin": "https://evil.example.com"}) is GateDecision.PREFLIGHT
    finally:
        settings.upstream_api_key = original


@pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "PATCH"])
def test_other_methods_are_not_allowed(method):
    gate, _ = _gate()
    with pytest.raises(MethodNotAllowedError) as excinfo:
        gate.check_request(method, _SHAREPOINT)
    assert excinfo.value.status_code == 405
    assert excinfo.value.to_payload() == {"error": "Method not allowed"}


def test_allow_listed_referer_or_origin_passes():
    gate, _ = _gate()
    assert gate.check_request("POST", _SHAREPOINT) is GateDecision.ALLOW
    assert gate.check_request("post", {"Origin": "https://personalai.sharepoint.com"}) is GateDecision.ALLOW


def test_misspelled_referrer_header_is_honoured():
    gate, _ = _gate()
    assert gate.check_request("POST", {"Referrer": "https://contoso.sharepoint.com/page"}) is GateDecision.ALLOW


def test_unknown_origin_is_denied_and_audited(tmp_path):
    gate, _ = _gate()
    headers = {"Origin": "https://evil.example.com", "Referer": "https://evil.example.com/x", "User-Agent": "curl/8"}
    with pytest.raises(AccessDeniedError) as excinfo:
        gate.check_request("POST", headers)
    assert excinfo.value.status_code == 403

    audit.flush_audit()
    lines = (tmp_path / "audit.jsonl").read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[-1])
    assert record["reason"] == "origin_not_allowed"
    assert record["origin"] == "https://evil.example.com"
    assert record["user_agent"] == "curl/8"


def test_vendor_marker_header_or_user_agent_authorizes():
    gate, _ = _gate()
    marker = {"Origin": "https://intranet.contoso.com", "X-SharePoint-Context": "1"}
    assert gate.check_request("POST", marker) is GateDecision.ALLOW
    agent = {"Referer": "https://intranet.contoso.com/", "User-Agent": "Mozilla/5.0 SharePoint/16.0"}
    assert gate.check_request("POST", agent) is GateDecision.ALLOW


def test_trusted_caller_without_origin_or_referer_is_denied_when_rate_limited():
    gate, _ = _gate()
    with pytest.raises(AccessDeniedError) as excinfo:
        gate.check_request("POST", {"User-Agent": "SharePoint Online"})
    assert "origin" in (excinfo.value.message or "").lower()

    original = settings.enable_rate_limit
    settings.enable_rate_limit = False
    try:
        assert gate.check_request("POST", {"User-Agent": "SharePoint Online"}) is GateDecision.ALLOW
    finally:
        settings.enable_rate_limit = original


def test_missing_api_key_is_service_misconfigured():
    gate, _ = _gate()
    original = settings.upstream_api_key
    settings.upstream_api_key = ""
    try:
        with pytest.raises(ServiceMisconfiguredError) as excinfo:
            gate.check_request("POST", _SHAREPOINT)
        assert excinfo.value.status_code == 500
        assert excinfo.value.to_payload() == {"error": "Service configuration error"}
    finally:
        settings.upstream_api_key = original


def test_rate_limit_rejects_request_after_threshold_and_resets_next_hour():
    gate, clock = _gate(now=3600 * 482136 + 10)
    original = settings.rate_limit_per_hour
    settings.rate_limit_per_hour = 500
    try:
        for _ in range(500):
            assert gate.check_request("POST", _SHAREPOINT) is GateDecision.ALLOW
        with pytest.raises(RateLimitedError) as excinfo:
            gate.check_request("POST", _SHAREPOINT)
        assert excinfo.value.status_code == 429

        other = {"Referer": "https://fabrikam.sharepoint.com/"}
        assert gate.check_request("POST", other) is GateDecision.ALLOW

        clock.now += 3600
        assert gate.check_request("POST", _SHAREPOINT) is GateDecision.ALLOW
    finally:
        settings.rate_limit_per_hour = original


def test_rate_limit_key_prefers_referer_host_over_origin():
    gate, _ = _gate(now=7200)
    identity = gate.identify({"Origin": "https://origin.sharepoint.com", "Referer": "https://ref.sharepoint.com/a"})
    assert gate.rate_limit_key(identity) == "ref.sharepoint.com:2"
    identity = gate.identify({"Origin": "https://origin.sharepoint.com"})
    assert gate.rate_limit_key(identity) == "origin.sharepoint.com:2"


def test_auth_token_is_checked_when_enabled():
    gate, _ = _gate()
    original = (settings.enable_auth_token, settings.auth_token)
    settings.enable_auth_token = True
    settings.auth_token = "s3cret"
    try:
        with pytest.raises(AccessDeniedError):
            gate.check_request("POST", _SHAREPOINT)
        with pytest.raises(AccessDeniedError):
            gate.check_request("POST", {**_SHAREPOINT, "X-Auth-Token": "wrong"})
        assert gate.check_request("POST", {**_SHAREPOINT, "X-Auth-Token": "s3cret"}) is GateDecision.ALLOW

        settings.auth_token = ""
        with pytest.raises(ServiceMisconfiguredError):
            gate.check_request("POST", _SHAREPOINT)
    finally:
        settings.enable_auth_token, settings.auth_token = original


def test_validate_body_applies_defaults_and_accepts_empty_text():
    gate, _ = _gate()
    chat = gate.validate_body({"Text": "", "DomainName": "x.com"})
    assert chat.text == ""
    assert chat.user_name == "Visitor"
    assert chat.source_name == "Chatbot"
    assert chat.session_id.startswith("session_")
    assert chat.is_draft is False
    assert chat.to_upstream_payload()["Text"] == ""


def test_validate_body_keeps_caller_fields():
    gate, _ = _gate()
    chat = gate.validate_body(
        {
            "Text": "Where is the HR policy?",
            "UserName": "Dana",
            "SourceName": "Intranet",
            "SessionId": "abc-123",
            "DomainName": "contoso",
            "is_draft": True,
        }
    )
    assert chat.to_upstream_payload() == {
        "Text": "Where is the HR policy?",
        "UserName": "Dana",
        "SourceName": "Intranet",
        "SessionId": "abc-123",
        "DomainName": "contoso",
        "is_draft": True,
    }


@pytest.mark.parametrize(
    ("payload", "error"),
    [
        ({"DomainName": "x.com"}, "Text is required"),
        ({"Text": None, "DomainName": "x.com"}, "Text is required"),
        ({"Text": 12, "DomainName": "x.com"}, "Text must be a string"),
        ({"Text": "hi"}, "DomainName is required"),
        ({"Text": "hi", "DomainName": "  "}, "DomainName is required"),
        (["Text", "hi"], "Invalid JSON body"),
        ({"Text": "hi", "DomainName": "x.com", "is_draft": "maybe"}, "is_draft must be a boolean"),
        ({"Text": "hi", "DomainName": "x.com", "is_draft": 1}, "is_draft must be a boolean"),
        ({"Text": "hi", "DomainName": "x.com", "is_draft": {"value": True}}, "is_draft must be a boolean"),
    ],
)
def test_validate_body_rejects_missing_fields(payload, error):
    gate, _ = _gate()
    with pytest.raises(InvalidRequestError) as excinfo:
        gate.validate_body(payload)
    assert excinfo.value.error == error
    assert excinfo.value.status_code == 400


def test_validate_body_enforces_max_text_length():
    gate, _ = _gate()
    assert gate.validate_body({"Text": "x" * 2000, "DomainName": "x.com"}).text == "x" * 2000
    with pytest.raises(InvalidRequestError) as excinfo:
        gate.validate_body({"Text": "x" * 2001, "DomainName": "x.com"})
    assert "2000" in excinfo.value.message


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (True, True),
        (False, False),
        (None, False),
        ("true", True),
        ("Yes", True),
        ("1", True),
        ("false", False),
        ("0", False),
        ("no", False),
        ("", False),
    ],
)
def test_validate_body_parses_is_draft_strings(raw, expected):
    gate, _ = _gate()
    chat = gate.validate_body({"Text": "hi", "DomainName": "x.com", "is_draft": raw})
    assert chat.is_draft is expected
    assert chat.to_upstream_payload()["is_draft"] is expected
