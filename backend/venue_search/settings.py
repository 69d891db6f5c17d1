from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    # whether to expose the dev cache endpoints
    DEBUG: bool = False
    DEV_ROUTES_ENABLED: bool = False
    SERVICE_NAME: str = "venue-search"
    ENVIRONMENT: str = "development"
    # CORS allow origins (comma-separated). Default empty (no cross-origin).
    CORS_ALLOW_ORIGINS: str = ""

    # Caches: capacity + TTL per logical cache
    GEOCODE_CACHE_SIZE: int = 2000
    GEOCODE_CACHE_TTL_SECONDS: float = 86400.0
    PROVIDER_CACHE_SIZE: int = 1000
    PROVIDER_CACHE_TTL_SECONDS: float = 900.0
    # Shorter TTL when results carry live open/closed data
    PROVIDER_LIVE_CACHE_TTL_SECONDS: float = 300.0
    PROVIDER_EMPTY_CACHE_TTL_SECONDS: float = 120.0
    RANKING_CACHE_SIZE: int = 1000
    RANKING_CACHE_TTL_SECONDS: float = 300.0
    SESSION_CACHE_SIZE: int = 10000
    SESSION_TTL_SECONDS: float = 1800.0
    ASSISTANT_CACHE_SIZE: int = 2000
    ASSISTANT_CACHE_TTL_SECONDS: float = 120.0
    CACHE_SWEEP_INTERVAL_SECONDS: float = 60.0

    # Per-stage timeouts
    INTENT_TIMEOUT_SECONDS: float = 4.0
    GEOCODE_TIMEOUT_SECONDS: float = 3.0
    PROVIDER_TIMEOUT_SECONDS: float = 6.0
    NARRATION_TIMEOUT_SECONDS: float = 4.0

    # Admission gate
    ADMISSION_MAX_CONCURRENT: int = 32
    ADMISSION_MAX_QUEUE: int = 64
    ADMISSION_QUEUE_TIMEOUT_SECONDS: float = 2.0

    # Mode + chip thresholds (product-tuned, not invariants)
    RECOVERY_CONFIDENCE_THRESHOLD: float = 0.6
    SORT_CHIPS_MIN_RESULTS: int = 5
    SORT_CHIPS_MIN_CONFIDENCE: float = 0.7
    MAX_NORMAL_CHIPS: int = 5
    MAX_RECOVERY_CHIPS: int = 5
    MAX_CLARIFY_CHIPS: int = 3
    HIGHLY_RATED_THRESHOLD: float = 4.5
    BUDGET_MAX_PRICE_LEVEL: int = 2
    EXPAND_RADIUS_CHIP_M: int = 10000
    # "rating=10,reviews=5,open_now=20,..." overrides for RankingWeights
    RANKING_WEIGHTS: str | None = None

    # Grouping radii in meters, exact/nearby per granularity
    STREET_EXACT_RADIUS_M: float = 200.0
    STREET_NEARBY_RADIUS_M: float = 400.0
    LANDMARK_EXACT_RADIUS_M: float = 500.0
    LANDMARK_NEARBY_RADIUS_M: float = 1000.0
    AREA_EXACT_RADIUS_M: float = 1000.0
    AREA_NEARBY_RADIUS_M: float = 2500.0
    CITY_MAX_RADIUS_M: float = 20000.0
    SEARCH_RADIUS_M: float = 3000.0
    RESULT_LIMIT: int = 20

    # Language
    DEFAULT_LANGUAGE: str = "en"
    PRIMARY_MARKET_REGION: str = "IL"
    PRIMARY_MARKET_LANGUAGE: str = "he"
    LANGUAGE_SCRIPT_THRESHOLD: float = 0.5
    CLARIFY_POPULAR_CITIES: str = "Tel Aviv,Jerusalem,Haifa"

    # Places + geocoding providers
    GOOGLE_API_KEY: str | None = None
    GOOGLE_PLACES_BASE_URL: str = "https://places.googleapis.com/v1"
    GOOGLE_GEOCODE_BASE_URL: str = "https://maps.googleapis.com/maps/api/geocode"
    PROVIDER_CONNECT_TIMEOUT_SECONDS: float = 2.0

    # Language model
    OPENAI_API_KEY: str | None = None
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    OPENAI_CONNECT_TIMEOUT_SECONDS: float = 5.0
    INTENT_MODEL: str = "gpt-4o-mini"
    NARRATION_MODEL: str = "gpt-4o-mini"
    NARRATION_MAX_TOKENS: int = 160
    NARRATION_TEMPERATURE: float = 0.3

    # Observability
    SENTRY_DSN: str | None = None
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_RELEASE: str | None = None
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    LOG_FORMAT: Literal["json", "console", "auto"] = "auto"

    @property
    def allow_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if s == "*":
            return ["*"]
        if s == "":
            return []
        return [part.strip() for part in s.split(",") if part.strip()]

    @property
    def parsed_popular_cities(self) -> list[str]:
        raw = (self.CLARIFY_POPULAR_CITIES or "").strip()
        if not raw:
            return []
        return [part.strip() for part in raw.split(",") if part.strip()]

    @property
    def group_radii(self) -> GroupRadii:
        return GroupRadii(
            street=(self.STREET_EXACT_RADIUS_M, self.STREET_NEARBY_RADIUS_M),
            landmark=(self.LANDMARK_EXACT_RADIUS_M, self.LANDMARK_NEARBY_RADIUS_M),
            area=(self.AREA_EXACT_RADIUS_M, self.AREA_NEARBY_RADIUS_M),
        )

    @property
    def json_logs(self) -> bool:
        if self.LOG_FORMAT == "auto":
            return not self.DEBUG
        return self.LOG_FORMAT == "json"


@dataclass(slots=True, frozen=True)
class GroupRadii:
    """(exact, nearby) radius pairs in meters, street tightest and area widest."""

    street: tuple[float, float] = (200.0, 400.0)
    landmark: tuple[float, float] = (500.0, 1000.0)
    area: tuple[float, float] = (1000.0, 2500.0)

    def __post_init__(self) -> None:
        pairs = (self.street, self.landmark, self.area)
        for exact, nearby in pairs:
            if not 0 < exact < nearby:
                raise ValueError(f"exact radius must be positive and below nearby: {exact}/{nearby}")
        if not (self.street[0] < self.landmark[0] < self.area[0]):
            raise ValueError("exact radii must increase street < landmark < area")
        if not (self.street[1] < self.landmark[1] < self.area[1]):
            raise ValueError("nearby radii must increase street < landmark < area")


settings = Settings()
