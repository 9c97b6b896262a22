"""Origin/referrer gate, rate limiting and body validation for the chat endpoint."""

from __future__ import annotations

import hmac
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

from chatgate.config.settings import Settings, settings as default_settings
from chatgate.core.audit import write_audit
from chatgate.core.errors import (
    AccessDeniedError,
    InvalidRequestError,
    MethodNotAllowedError,
    RateLimitedError,
    ServiceMisconfiguredError,
)
from chatgate.core.models import ChatRequest, generate_session_id
from chatgate.core.rate_limit import RateLimiter, build_rate_limiter, hour_bucket
from chatgate.util.fields import strict_flag
from chatgate.util.logger import logger

PREFLIGHT_METHOD = "OPTIONS"
SUBMIT_METHOD = "POST"


class GateDecision(str, Enum):
    PREFLIGHT = "preflight"
    ALLOW = "allow"


@dataclass(slots=True)
class CallerIdentity:
    origin: str = ""
    referer: str = ""
    user_agent: str = ""
    marker_header: str = ""

    def audit_fields(self) -> dict[str, str]:
        return {"origin": self.origin, "referer": self.referer, "user_agent": self.user_agent}


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def _header_value(headers: Mapping[str, str], target: str) -> str:
    for key, value in headers.items():
        if key.lower() == target.lower():
            return value
    return ""


def _hostname(url_like: str) -> str:
    candidate = (url_like or "").strip()
    if not candidate:
        return ""
    if "://" not in candidate:
        candidate = f"//{candidate}"
    try:
        return (urlparse(candidate).hostname or "").strip().lower()
    except ValueError:
        return ""


class AccessGate:
    """Decides allow / deny / preflight-ok before any upstream call is made."""

    def __init__(
        self,
        config: Settings | None = None,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = config or default_settings
        self.rate_limiter = rate_limiter
        self._clock = clock

    def identify(self, headers: Mapping[str, str]) -> CallerIdentity:
        marker = ""
        for name in _split_csv(self.settings.trusted_marker_headers):
            value = _header_value(headers, name)
            if value:
                marker = name
                break
        return CallerIdentity(
            origin=_header_value(headers, "origin"),
            referer=_header_value(headers, "referer") or _header_value(headers, "referrer"),
            user_agent=_header_value(headers, "user-agent"),
            marker_header=marker,
        )

    def is_authorized(self, identity: CallerIdentity) -> bool:
        for domain in _split_csv(self.settings.allowed_domains):
            if domain in identity.referer or domain in identity.origin:
                return True
        if identity.marker_header:
            return True
        return any(marker in identity.user_agent for marker in _split_csv(self.settings.trusted_user_agents))

    def rate_limit_key(self, identity: CallerIdentity) -> str:
        # referer 主机名优先，缺失时回退到 origin
        host = _hostname(identity.referer) or _hostname(identity.origin)
        if not host:
            raise AccessDeniedError(message="Request origin could not be determined")
        bucket = hour_bucket(self._clock(), self.settings.rate_limit_window_seconds)
        return f"{host}:{bucket}"

    def _deny(
        self, identity: CallerIdentity, reason: str, error: AccessDeniedError | RateLimitedError
    ) -> AccessDeniedError | RateLimitedError:
        logger.warning(
            "gate reject reason=%s origin=%s referer=%s user_agent=%s",
            reason,
            identity.origin,
            identity.referer,
            identity.user_agent,
        )
        write_audit({"event": "gate_reject", "reason": reason, **identity.audit_fields()})
        return error

    def _check_auth_token(self, headers: Mapping[str, str], identity: CallerIdentity) -> None:
        if not self.settings.enable_auth_token:
            return
        expected = self.settings.auth_token
        if not expected:
            logger.error("auth token check enabled but token is empty")
            raise ServiceMisconfiguredError()
        presented = _header_value(headers, self.settings.auth_token_header).strip()
        if not presented or not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
            raise self._deny(
                identity,
                "auth_token_invalid",
                AccessDeniedError("Access denied: Invalid or missing authentication token"),
            )

    def _check_rate_limit(self, identity: CallerIdentity) -> None:
        if not self.settings.enable_rate_limit:
            return
        try:
            key = self.rate_limit_key(identity)
        except AccessDeniedError as exc:
            raise self._deny(identity, "origin_unknown", exc) from None
        if self.rate_limiter is None:
            self.rate_limiter = build_rate_limiter()
        count = self.rate_limiter.increment(key)
        limit = int(self.settings.rate_limit_per_hour)
        if count > limit:
            raise self._deny(
                identity,
                "rate_limited",
                RateLimitedError(message=f"Too many requests from this domain, limit is {limit} per hour"),
            )
        logger.debug("gate rate count key=%s count=%d limit=%d", key, count, limit)

    def check_request(self, method: str, headers: Mapping[str, str]) -> GateDecision:
        normalized = (method or "").upper()
        if normalized == PREFLIGHT_METHOD:
            return GateDecision.PREFLIGHT
        if normalized != SUBMIT_METHOD:
            raise MethodNotAllowedError()

        if not self.settings.upstream_api_key:
            logger.error("upstream api key not configured")
            raise ServiceMisconfiguredError()

        identity = self.identify(headers)
        if not self.is_authorized(identity):
            raise self._deny(identity, "origin_not_allowed", AccessDeniedError())

        self._check_auth_token(headers, identity)
        self._check_rate_limit(identity)
        logger.debug("gate pass origin=%s referer=%s", identity.origin, identity.referer)
        return GateDecision.ALLOW

    def validate_body(self, payload: Any) -> ChatRequest:
        if not isinstance(payload, dict):
            raise InvalidRequestError("Invalid JSON body")

        text = payload.get("Text")
        if text is None:
            raise InvalidRequestError("Text is required")
        if not isinstance(text, str):
            raise InvalidRequestError("Text must be a string")
        max_length = int(self.settings.max_text_length)
        if max_length > 0 and len(text) > max_length:
            raise InvalidRequestError(
                "Text is too long",
                message=f"Text exceeds the maximum length of {max_length} characters",
            )

        domain_name = payload.get("DomainName")
        if not isinstance(domain_name, str) or not domain_name.strip():
            raise InvalidRequestError("DomainName is required")

        is_draft = strict_flag(payload.get("is_draft"))
        if is_draft is None:
            raise InvalidRequestError("is_draft must be a boolean")

        return ChatRequest(
            text=text,
            domain_name=domain_name,
            user_name=str(payload.get("UserName") or self.settings.default_user_name),
            source_name=str(payload.get("SourceName") or self.settings.default_source_name),
            session_id=str(payload.get("SessionId") or generate_session_id()),
            is_draft=is_draft,
        )
