"""
Engine configuration loaded from environment variables (and backend/.env).

Provider credentials normally arrive with each request; the *_API_KEY
variables below are only a fallback for local runs.
"""

import os
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()


class EngineConfig:
    """Configuration for the workflow engine and its provider adapters"""

    # Provider endpoints
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    ANTHROPIC_BASE_URL: str = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
    ELEVENLABS_BASE_URL: str = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io/v1")
    SUPADATA_BASE_URL: str = os.getenv("SUPADATA_BASE_URL", "https://api.supadata.ai/v1")
    FAL_RUN_URL: str = os.getenv("FAL_RUN_URL", "https://fal.run")
    FAL_QUEUE_URL: str = os.getenv("FAL_QUEUE_URL", "https://queue.fal.run")

    # HTTP settings
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "120"))
    PROVIDER_CONNECT_TIMEOUT_SECONDS: float = float(
        os.getenv("PROVIDER_CONNECT_TIMEOUT_SECONDS", "20")
    )

    # Generation defaults (applied when a node leaves them unset)
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 2048

    # Service settings
    LOG_LEVEL: str = os.getenv("NODEFLOW_LOG_LEVEL", "INFO").upper()
    CORS_ORIGIN_REGEX: str = os.getenv(
        "NODEFLOW_CORS_ORIGIN_REGEX",
        r"^http:\/\/localhost:\d+$|^http:\/\/127\.0\.0\.1:\d+$",
    )

    # Provider id -> environment variable holding a fallback key
    CREDENTIAL_ENV_VARS: Dict[str, str] = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "elevenlabs": "ELEVENLABS_API_KEY",
        "supadata": "SUPADATA_API_KEY",
        "fal": "FAL_KEY",
    }

    @classmethod
    def credentials_from_env(cls) -> Dict[str, str]:
        """
        Collect provider credentials present in the environment.

        Returns:
            Mapping of provider id to secret, only for variables that are set
        """
        credentials: Dict[str, str] = {}
        for provider_id, env_var in cls.CREDENTIAL_ENV_VARS.items():
            value = (os.getenv(env_var) or "").strip()
            if value:
                credentials[provider_id] = value
        return credentials

    @classmethod
    def merged_credentials(cls, overrides: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Environment credentials with request-supplied ones layered on top."""
        credentials = cls.credentials_from_env()
        for provider_id, secret in (overrides or {}).items():
            if secret:
                credentials[provider_id] = secret
        return credentials
