import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str) -> List[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


class RatingSettings(BaseModel):
    # Discrete values an employee may self-rate with, ascending
    self_rating_values: List[float] = Field(
        default_factory=lambda: sorted(float(v) for v in _env_list("SELF_RATING_VALUES", "1.00,1.25,1.50"))
    )
    default_self_rating_enabled: bool = Field(
        default=os.getenv("DEFAULT_SELF_RATING_ENABLED", "true").lower() == "true"
    )
    min_accomplishments: int = int(os.getenv("MIN_ACCOMPLISHMENTS", "2"))


class Config(BaseModel):
    app_name: str = "KPI Review Service"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./kpi_review.db")

    version: str = "1.0.0"
    build_id: str = os.getenv("BUILD_ID", "local")
    request_id_header: str = "X-Request-ID"
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    sql_echo: bool = os.getenv("SQL_ECHO", "false").lower() == "true"

    # CORS: comma-separated origins loaded from env.
    cors_origins: List[str] = Field(
        default_factory=lambda: _env_list(
            "CORS_ORIGINS",
            "http://localhost:3000,http://localhost:5173,"
            "http://127.0.0.1:3000,http://127.0.0.1:5173",
        )
    )

    # Rating engine
    ratings: RatingSettings = RatingSettings()


settings = Config()

_logger = logging.getLogger(__name__)
if len(settings.ratings.self_rating_values) == 0:
    raise RuntimeError("FATAL: SELF_RATING_VALUES must contain at least one rating value.")
if settings.environment == "development" and settings.database_url.startswith("sqlite"):
    _logger.warning("⚠ Using local SQLite database, only acceptable in development.")
