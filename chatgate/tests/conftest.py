import pytest

from chatgate.adapters.chat import router as chat_router
from chatgate.config.settings import settings


@pytest.fixture(autouse=True)
def _gateway_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "upstream_api_key", "test-key")
    monkeypatch.setattr(settings, "upstream_url", "https://upstream.example.com/v1/message")
    monkeypatch.setattr(settings, "audit_log_path", str(tmp_path / "audit.jsonl"))
    monkeypatch.setattr(settings, "allowed_domains", "sharepoint.com,personalai.sharepoint.com")
    monkeypatch.setattr(settings, "trusted_marker_headers", "x-sharepoint-context")
    monkeypatch.setattr(settings, "trusted_user_agents", "SharePoint")
    monkeypatch.setattr(settings, "enable_rate_limit", True)
    monkeypatch.setattr(settings, "rate_limit_per_hour", 500)
    monkeypatch.setattr(settings, "rate_limit_backend", "memory")
    monkeypatch.setattr(settings, "enable_auth_token", False)
    monkeypatch.setattr(settings, "max_text_length", 2000)
    chat_router.reset_access_gate()
    yield
    chat_router.reset_access_gate()
