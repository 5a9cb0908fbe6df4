from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    APP_NAME: str = "MasteryPath Engine"
    LOG_LEVEL: str = "INFO"

    # ── BKT Default Parameters ────────────────
    BKT_DEFAULT_P_L0: float = 0.3   # Prior mastery (seeds new knowledge states)
    BKT_DEFAULT_P_T: float = 0.09   # Learn probability
    BKT_DEFAULT_P_S: float = 0.1    # Slip probability
    BKT_DEFAULT_P_G: float = 0.2    # Guess probability

    # ── Sequencing ────────────────────────────
    MASTERY_THRESHOLD: float = 0.90  # KC considered "mastered" / path entry completed

    # ── Content recommendation ────────────────
    RECENT_ITEM_WINDOW: int = 10
    RECENT_ITEM_PENALTY: float = 5.0
    DIFFICULTY_STEP_PENALTY: float = 2.0

    # ── Urgency policy ────────────────────────
    CRITICAL_MASTERY: float = 0.20
    CRITICAL_MASTERY_WEIGHT: float = 20.0
    VERY_LOW_MASTERY: float = 0.30
    VERY_LOW_MASTERY_WEIGHT: float = 15.0
    NEVER_STARTED_WEIGHT: float = 5.0
    INACTIVE_DAYS: int = 7
    INACTIVE_WEIGHT: float = 15.0
    RECENTLY_INACTIVE_DAYS: int = 3
    RECENTLY_INACTIVE_WEIGHT: float = 10.0
    HIGH_PRIORITY_WEIGHT: float = 10.0
    HIGH_URGENCY_SCORE: float = 25.0
    MEDIUM_URGENCY_SCORE: float = 10.0
    INTERVENTION_TOP_N: int = 5

    # ── Need assessment (system-set priority) ─
    NEED_MIN_RESPONSES: int = 5
    NEED_RECENT_WINDOW: int = 10
    NEED_MASTERY_WEIGHT: float = 0.4
    NEED_ACCURACY_WEIGHT: float = 0.4
    NEED_TREND_WEIGHT: float = 0.2
    NEED_HIGH_BELOW: float = 0.3
    NEED_MEDIUM_BELOW: float = 0.5
    NEED_LOW_BELOW: float = 0.7

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = 'utf-8'


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance - cached to avoid re-reading .env on every request"""
    return Settings()
