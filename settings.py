# settings.py
import os
from pydantic import model_validator
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings for the Pander poll agent.
    """

    # Redis Configuration (broker, result backend and scheduler state)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Blockchain Configuration
    RPC_URL: str = os.getenv("RPC_URL", "http://localhost:8545")
    CHAIN_ID: int = int(os.getenv("CHAIN_ID", "31337"))
    PRIVATE_KEY: Optional[str] = None
    RPC_TIMEOUT: int = int(os.getenv("RPC_TIMEOUT", "30"))

    # CapyCore factory (local Anvil deployment)
    CAPY_CORE_ADDRESS: str = os.getenv(
        "CAPY_CORE_ADDRESS",
        "0xCf7Ed3AccA5a467e9e704C703E8D87F634fB0Fc9"
    )

    # Ponder GraphQL endpoint, empty falls back to on-chain reads
    INDEXER_URL: str = os.getenv("INDEXER_URL", "")

    # External API Configuration
    EXA_API_URL: str = os.getenv("EXA_API_URL", "https://api.exa.ai")
    EXA_API_KEY: str = os.getenv("EXA_API_KEY", "")
    OPENROUTER_API_URL: str = os.getenv(
        "OPENROUTER_API_URL",
        "https://openrouter.ai/api/v1/chat/completions"
    )
    OPENROUTER_API_KEY: str = os.getenv("OPENROUTER_API_KEY", "")
    OPENROUTER_MODEL: str = os.getenv("OPENROUTER_MODEL", "deepseek/deepseek-r1:free")
    SEARCH_NUM_RESULTS: int = int(os.getenv("SEARCH_NUM_RESULTS", "10"))
    SEARCH_EXCERPT_CHARS: int = int(os.getenv("SEARCH_EXCERPT_CHARS", "500"))
    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "30.0"))

    # Scheduler Configuration
    MONITOR_INTERVAL_SECONDS: int = int(os.getenv("MONITOR_INTERVAL_SECONDS", "60"))
    EPOCH_BATCH_SIZE: int = int(os.getenv("EPOCH_BATCH_SIZE", "100"))
    EPOCH_BATCH_DELAY_SECONDS: int = int(os.getenv("EPOCH_BATCH_DELAY_SECONDS", "5"))
    MAX_COUNTDOWN_SECONDS: int = int(os.getenv("MAX_COUNTDOWN_SECONDS", "3000"))
    BROKER_VISIBILITY_TIMEOUT: int = int(os.getenv("BROKER_VISIBILITY_TIMEOUT", "3600"))
    JOB_CLAIM_TTL_SECONDS: int = int(os.getenv("JOB_CLAIM_TTL_SECONDS", str(90 * 24 * 60 * 60)))

    # Transaction Configuration
    TX_GAS_LIMIT: int = int(os.getenv("TX_GAS_LIMIT", "2000000"))
    TX_RECEIPT_TIMEOUT: int = int(os.getenv("TX_RECEIPT_TIMEOUT", "120"))
    POLL_DURATION_FALLBACK_DAYS: int = int(os.getenv("POLL_DURATION_FALLBACK_DAYS", "30"))

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE_PATH: str = os.getenv("LOG_FILE_PATH", "logs/pander_agent.log")

    # API Configuration
    PORT: int = int(os.getenv("PORT", "3001"))

    @model_validator(mode="after")
    def check_scheduler_limits(self):
        if self.EPOCH_BATCH_SIZE <= 0:
            raise ValueError("EPOCH_BATCH_SIZE must be positive")
        if self.MAX_COUNTDOWN_SECONDS >= self.BROKER_VISIBILITY_TIMEOUT:
            # Delayed messages outliving the visibility timeout get redelivered
            raise ValueError("MAX_COUNTDOWN_SECONDS must be lower than BROKER_VISIBILITY_TIMEOUT")
        return self

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
