from pydantic_settings import BaseSettings
from typing import List
import os
import logging
import boto3
from functools import lru_cache

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_anthropic_api_key() -> str:
    """Get Anthropic API key from environment or SSM Parameter Store (cached)"""
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if api_key:
        return api_key

    param_name = os.getenv("ANTHROPIC_API_KEY_PARAM")
    if param_name:
        try:
            ssm = boto3.client('ssm', config=boto3.session.Config(
                retries={'max_attempts': 2, 'mode': 'standard'},
                read_timeout=10,
                connect_timeout=5
            ))
            response = ssm.get_parameter(Name=param_name, WithDecryption=True)
            return response['Parameter']['Value']
        except Exception as e:
            logger.error(f"Failed to load API key from SSM: {e}")
            return ""

    return ""


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = ""

    # Content generation
    ANTHROPIC_DEFAULT_MODEL: str = "claude-sonnet-4-20250514"
    ANTHROPIC_STRUCTURING_MODEL: str = "claude-sonnet-4-20250514"
    GENERATION_TEMPERATURE: float = 0.7

    # JWT Authentication (tokens are issued by the account service)
    JWT_SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://localhost:5174"]

    APP_NAME: str = "Kelly Insights"
    VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Insight cache
    INSIGHT_CACHE_TTL_MINUTES: int = 30
    INSIGHT_STALE_AFTER_MINUTES: int = 30
    INSIGHT_PURGE_GRACE_HOURS: int = 24

    # Market statistics
    MARKET_STATS_WINDOW_DAYS: int = 30
    MARKET_STATS_SAMPLE_LIMIT: int = 500
    MARKET_STATS_MIN_SALES: int = 3

    # Pricing pipeline
    PRICING_INVENTORY_LIMIT: int = 50
    PRICING_SOLD_HISTORY_LIMIT: int = 20
    MAX_PRICING_INSIGHTS: int = 5

    # Actions
    BUNDLE_DISCOUNT_PERCENT: int = 15
    BUNDLE_MIN_ARTICLES: int = 2
    REGENERATION_DELAY_SECONDS: float = 2.0

    # Per-seller state kept in memory
    AGGREGATOR_IDLE_MINUTES: int = 60

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
