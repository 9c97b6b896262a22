"""Runtime settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHATGATE_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "chatgate"
    env: str = "dev"
    log_level: str = "info"
    host: str = "127.0.0.1"
    port: int = 18090
    # 启动时缺少上游密钥直接失败；False 时只记录错误，请求阶段返回 500
    strict_startup: bool = False

    upstream_url: str = Field(
        default="https://api.personal.ai/v1/message",
        validation_alias=AliasChoices("CHATGATE_UPSTREAM_URL", "PERSONAL_AI_API_URL"),
    )
    upstream_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("CHATGATE_UPSTREAM_API_KEY", "PERSONAL_AI_API_KEY"),
    )
    upstream_api_key_header: str = "x-api-key"
    upstream_timeout_seconds: float = 60.0
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20

    allowed_domains: str = "sharepoint.com,personalai.sharepoint.com"
    trusted_marker_headers: str = "x-sharepoint-context"
    trusted_user_agents: str = "SharePoint"

    cors_allow_origin: str = "*"
    cors_allow_methods: str = "POST, OPTIONS"
    cors_allow_headers: str = "Content-Type, X-Auth-Token"

    # 可选的共享 token 校验，默认关闭
    enable_auth_token: bool = False
    auth_token: str = ""
    auth_token_header: str = "x-auth-token"

    enable_rate_limit: bool = True
    rate_limit_per_hour: int = Field(default=500, ge=1)
    rate_limit_window_seconds: int = Field(default=3600, ge=1)
    rate_limit_backend: str = "memory"  # memory | redis
    rate_limit_max_keys: int = 50000
    redis_url: str = "redis://127.0.0.1:6379/0"
    redis_key_prefix: str = "chatgate"

    max_text_length: int = Field(default=2000, ge=0)  # 0 表示不限制
    max_request_body_bytes: int = 65_536

    default_user_name: str = "Visitor"
    default_source_name: str = "Chatbot"
    stream_done_sentinel: str = "[DONE]"
    batch_empty_message: str = "No response available"
    upstream_failure_message: str = "I apologize, but I'm having trouble responding right now. Please try again."
    stream_failure_message: str = (
        "I apologize, but I encountered an error while processing your request. Please try again."
    )

    audit_log_path: str = "logs/audit.jsonl"  # 空串表示不写审计文件


settings = Settings()
