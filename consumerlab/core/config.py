"""
Configuration management for ConsumerLab
"""

import os
from typing import List, Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Config:
    """Application configuration"""

    # Completion provider (any OpenAI-compatible gateway)
    LLM_API_BASE_URL: Optional[str] = os.getenv('LLM_API_BASE_URL') or None
    LLM_API_KEY: str = os.getenv('LLM_API_KEY', '') or os.getenv('OPENAI_API_KEY', '')
    LLM_TIMEOUT_SECONDS: float = float(os.getenv('LLM_TIMEOUT_SECONDS', '120'))

    # Provider resilience
    PROVIDER_MAX_ATTEMPTS: int = int(os.getenv('PROVIDER_MAX_ATTEMPTS', '2'))
    MAX_CONCURRENT_COMPLETIONS: int = int(os.getenv('MAX_CONCURRENT_COMPLETIONS', '4'))

    # Profile generation
    PROFILE_BATCH_SIZE: int = int(os.getenv('PROFILE_BATCH_SIZE', '10'))
    PROFILE_MAX_TOKENS: int = int(os.getenv('PROFILE_MAX_TOKENS', '6000'))
    DOCUMENT_CHAR_LIMIT: int = int(os.getenv('DOCUMENT_CHAR_LIMIT', '2000'))
    DEFAULT_PROFILE_COUNT: int = int(os.getenv('DEFAULT_PROFILE_COUNT', '100'))
    MAX_PROFILE_COUNT: int = int(os.getenv('MAX_PROFILE_COUNT', '1000'))

    # Preference analysis
    ANALYSIS_BATCH_SIZE: int = int(os.getenv('ANALYSIS_BATCH_SIZE', '5'))
    ANALYSIS_MAX_TOKENS: int = int(os.getenv('ANALYSIS_MAX_TOKENS', '2000'))
    ANALYSIS_TEMPERATURE: float = float(os.getenv('ANALYSIS_TEMPERATURE', '0.3'))
    INSIGHTS_MAX_TOKENS: int = int(os.getenv('INSIGHTS_MAX_TOKENS', '1500'))
    INSIGHTS_TEMPERATURE: float = float(os.getenv('INSIGHTS_TEMPERATURE', '0.4'))

    # Job lifecycle
    JOB_TTL_SECONDS: int = int(os.getenv('JOB_TTL_SECONDS', '3600'))
    JOB_SWEEP_INTERVAL_SECONDS: int = int(os.getenv('JOB_SWEEP_INTERVAL_SECONDS', '300'))

    # Fallback policy
    USE_MOCK_DATA: bool = _env_bool('USE_MOCK_DATA', 'false')
    FALLBACK_TO_MOCK_DATA: bool = _env_bool('FALLBACK_TO_MOCK_DATA', 'true')

    # API
    CONSUMERLAB_API_KEY: str = os.getenv('CONSUMERLAB_API_KEY', '')
    CORS_ORIGINS: List[str] = _env_list('CORS_ORIGINS', '*')
    RATE_LIMIT_ENABLED: bool = _env_bool('RATE_LIMIT_ENABLED', 'true')
    RATE_LIMIT_SUBMIT: str = os.getenv('RATE_LIMIT_SUBMIT', '20/minute')

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'LLM_API_KEY': cls.LLM_API_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    # ========================================================================
    # Model Configuration
    # ========================================================================

    PROFILE_MODEL = "gpt-4o-mini"
    ANALYSIS_FALLBACK_MODEL = "gpt-4o"
    INSIGHTS_MODEL = "gpt-4o"

    # Rotated per (profile batch, concept) to spread load across models
    ANALYSIS_MODELS: List[str] = _env_list(
        'ANALYSIS_MODELS', 'grok-3,gpt-4o-mini,gpt-5-nano,claude-sonnet-4'
    )

    @classmethod
    def get_model(cls, key: str) -> str:
        """
        Get the configured LLM model for a pipeline step.

        Resolution Order:
        1. Environment Variable: {KEY}_MODEL (e.g. PROFILE_MODEL)
        2. Default mapping in this method
        3. Config.PROFILE_MODEL

        Args:
            key: step name ('profile', 'analysis_fallback', 'insights');
                 case-insensitive.

        Returns:
            Model identifier understood by the completion gateway
        """
        key_upper = key.upper()

        env_model = os.getenv(f"{key_upper}_MODEL")
        if env_model:
            return env_model

        mappings = {
            "PROFILE": cls.PROFILE_MODEL,
            "ANALYSIS_FALLBACK": cls.ANALYSIS_FALLBACK_MODEL,
            "INSIGHTS": cls.INSIGHTS_MODEL,
        }

        return mappings.get(key_upper, cls.PROFILE_MODEL)
