from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Final, Optional

from dotenv import load_dotenv

from agent_bridge._exceptions import ConfigurationError


class Provider(StrEnum):
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MISTRAL = "mistral"


_ENV_VARS: Final[dict[Provider, str]] = {
    Provider.OPENROUTER: "OPENROUTER_API_KEY",
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.MISTRAL: "MISTRAL_API_KEY",
}

DEFAULT_BASE_URLS: Final[dict[Provider, str]] = {
    Provider.OLLAMA: "http://localhost:11434",
    Provider.OPENROUTER: "https://openrouter.ai/api/v1",
}

DEFAULT_TIMEOUT: Final = 120.0


def get_api_key(provider: Provider) -> Optional[str]:
    """Return the API key for *provider*, or None if it needs none or none is set."""
    load_dotenv()
    env = _ENV_VARS.get(Provider(provider))
    if not env:
        return None
    return os.getenv(env) or None


def require_api_key(provider: Provider, explicit: Optional[str] = None) -> str:
    """Return *explicit* or the environment key, or raise ConfigurationError."""
    key = explicit or get_api_key(provider)
    if not key:
        env = _ENV_VARS.get(Provider(provider), "an API key")
        raise ConfigurationError(f"{provider} requires an API key: {env} missing")
    return key


@dataclass
class ClientConfig:
    """Where and how to reach an inference provider."""

    provider: Provider = Provider.OLLAMA
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    organization: Optional[str] = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        try:
            self.provider = Provider(self.provider)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown provider: {self.provider!r}") from exc

    def resolved_base_url(self) -> Optional[str]:
        return self.base_url or DEFAULT_BASE_URLS.get(self.provider)

    def copy(self) -> "ClientConfig":
        return replace(self, extra_headers=dict(self.extra_headers))


__all__ = [
    "Provider",
    "ClientConfig",
    "get_api_key",
    "require_api_key",
    "DEFAULT_BASE_URLS",
]
