"""
NH Childcare Payments Tracker - Configuration

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default=f"sqlite:///{PROJECT_ROOT}/data/nh_childcare.db"
    )

    @property
    def project_root(self) -> Path:
        """Return project root directory."""
        return PROJECT_ROOT

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=True)
    # Defaults to <project root>/logs
    LOG_DIR: str = Field(default="")

    # Entity resolution decision bands (0..1)
    MATCH_HIGH_THRESHOLD: float = Field(default=0.85)
    MATCH_LOW_THRESHOLD: float = Field(default=0.55)

    # Similarity scorer weights
    NAME_WEIGHT: float = Field(default=0.60)
    LOCATION_WEIGHT: float = Field(default=0.25)
    LICENSE_WEIGHT: float = Field(default=0.15)
    LICENSE_MATCH_FLOOR: float = Field(default=0.99)

    # Max providers scored per observation
    CANDIDATE_LIMIT: int = Field(default=200)

    # Bridge pipeline
    BRIDGE_CHUNK_SIZE: int = Field(default=100)

    # Fraud analyzer
    STRUCTURING_THRESHOLD: float = Field(default=10000)
    NEAR_THRESHOLD_RATIO: float = Field(default=0.90)
    MATERIALITY_THRESHOLD: float = Field(default=5000000)
    CONCENTRATION_SHARE: float = Field(default=0.25)
    CONCENTRATION_MIN_PROVIDERS: int = Field(default=3)
    RAPID_GROWTH_RATIO: float = Field(default=3.0)
    RAPID_GROWTH_MIN_BASELINE: float = Field(default=10000)
    MAX_ANNUAL_PAYMENT_PER_SLOT: float = Field(default=25000)
    # Contract heuristics
    LARGE_INCREASE_RATIO: float = Field(default=1.25)
    MIN_AMENDMENTS: int = Field(default=2)
    NO_COMPETITION_MIN_CONTRACTS: int = Field(default=3)
    # Form 990 government grants vs state payments
    GRANT_MISMATCH_RATIO: float = Field(default=0.20)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
