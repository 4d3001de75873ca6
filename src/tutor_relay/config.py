from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Optional, Tuple

DEFAULT_ALLOWED_ORIGINS: Tuple[str, ...] = (
    "http://localhost:5173",
    "https://barbarapdfeditor.net",
)


@dataclass(frozen=True)
class RelayConfig:
    openai_api_key: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 3001
    allowed_origins: Tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_ALLOWED_ORIGINS
    )
    environment: str = "production"
    upstream_base_url: str = "https://api.openai.com/v1"
    text_model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 500
    max_body_bytes: int = 10 * 1024 * 1024
    # Matches the provider SDK default so long vision answers are not cut off.
    upstream_timeout_ms: int = 600_000
    log_path: str = "logs/tutor_relay.jsonl"
    max_log_bytes: int = 25_000_000
    config_file_path: Optional[str] = None

    @property
    def api_key_configured(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() == "development"

    def is_origin_allowed(self, origin: str | None) -> bool:
        """Requests without an Origin header (curl, native apps) are always allowed."""
        if not origin:
            return True
        return origin in self.allowed_origins

    def redacted(self) -> dict:
        data = asdict(self)
        data["allowed_origins"] = list(self.allowed_origins)
        data["openai_api_key"] = "***" if self.openai_api_key else None
        return data

    @classmethod
    def load(cls) -> "RelayConfig":
        from .config_loader import load_relay_config

        return load_relay_config()
