"""Runtime settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SIDERGATE_", extra="ignore")

    app_name: str = "SiderGate"
    log_level: str = "info"
    # DEBUG 下是否打印完整请求正文；False 时只打 method/path/headers + body_size
    log_full_request_body: bool = False
    log_dir: str = "logs"
    host: str = "127.0.0.1"
    port: int = 4141

    # 入站凭证：配置后必须完全匹配；未配置时仅做基本格式校验
    auth_token: str = ""
    allow_dummy_token: bool = True

    sider_api_url: str = "https://sider.ai/api/chat/v1/completions"
    sider_conversation_url: str = "https://sider.ai/api/chat/v1/conversation/messages"
    sider_auth_token: str = ""
    sider_timeout_seconds: float = 30.0
    sider_history_timeout_seconds: float = 10.0
    sider_history_limit: int = 50

    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_api_key: str = ""
    anthropic_version: str = "2023-06-01"
    anthropic_timeout_seconds: float = 60.0
    enable_dynamic_model_mapping: bool = True

    default_backend: str = "sider"  # sider | anthropic
    auto_fallback: bool = True
    prefer_sider_for_simple_chat: bool = True
    debug_routing: bool = False

    # 模拟流式输出的逐词间隔
    stream_token_delay_ms: int = Field(default=150, ge=0)
    stream_tail_delay_ms: int = Field(default=100, ge=0)

    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20

    conversation_cleanup_hours: float = 1.0
    sider_session_cleanup_hours: float = 2.0


settings = Settings()
