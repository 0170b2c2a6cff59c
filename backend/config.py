# backend/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (or current working directory)
env_path = Path(__file__).resolve().parents[1] / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # fallback to any .env in cwd
    load_dotenv()

def get_env(key: str, default=None):
    val = os.environ.get(key, default)
    if val is None:
        return default
    return val

def get_bool(key: str, default: bool = False) -> bool:
    return str(get_env(key, str(default))).strip().lower() in ("1", "true", "yes", "on")

def parse_windows(raw: str) -> list[int]:
    """Parse "1,6,48" into a sorted list of distinct positive window sizes."""
    out = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit() and int(part) > 0:
            out.add(int(part))
    return sorted(out)


@dataclass(frozen=True)
class ScorerConfig:
    """Numeric coefficients of the opportunity scorer."""
    competition_coeff: float = 0.005
    risk_penalty_coeff: float = 1.5
    liquidity_floor: float = 5.0
    liquidity_reference: float = 80.0
    eta_half_life_hours: float = 2.0


class Settings:
    MYSQL_USER: str = get_env("MYSQL_USER", "root")
    MYSQL_PASSWORD: str = get_env("MYSQL_PASSWORD", "")
    MYSQL_HOST: str = get_env("MYSQL_HOST", "127.0.0.1")
    MYSQL_PORT: int = int(get_env("MYSQL_PORT", 3306))
    MYSQL_DB: str = get_env("MYSQL_DB", "exchangedb")
    DATABASE_URL: str = get_env("DATABASE_URL", "")

    # ingestion feed
    FEED_URL: str = get_env("FEED_URL", "https://api.hypixel.net/v2/skyblock/bazaar")
    POLL_INTERVAL_SECONDS: int = int(get_env("POLL_INTERVAL_SECONDS", 60))
    POLL_MAX_RETRIES: int = int(get_env("POLL_MAX_RETRIES", 3))
    POLL_BACKOFF_SECONDS: float = float(get_env("POLL_BACKOFF_SECONDS", 2))

    # compaction
    COMPACTION_GRACE_SECONDS: int = int(get_env("COMPACTION_GRACE_SECONDS", 120))
    COMPACTION_MAX_ATTEMPTS: int = int(get_env("COMPACTION_MAX_ATTEMPTS", 3))
    PRICE_MOVE_THRESHOLD: float = float(get_env("PRICE_MOVE_THRESHOLD", 0.2))
    MAX_SNAPSHOT_GAP_MINUTES: int = int(get_env("MAX_SNAPSHOT_GAP_MINUTES", 5))
    POINT_ORDER_BOOK_DEPTH: int = int(get_env("POINT_ORDER_BOOK_DEPTH", 30))

    # finance windows
    AGGREGATION_WINDOWS: list[int] = parse_windows(get_env("AGGREGATION_WINDOWS", "1,6,48"))
    AGGREGATION_INTERVAL_MINUTES: int = int(get_env("AGGREGATION_INTERVAL_MINUTES", 60))
    AGGREGATION_BATCH_SIZE: int = int(get_env("AGGREGATION_BATCH_SIZE", 500))

    # scorer coefficients
    SCORER_COMPETITION_COEFF: float = float(get_env("SCORER_COMPETITION_COEFF", 0.005))
    SCORER_RISK_PENALTY_COEFF: float = float(get_env("SCORER_RISK_PENALTY_COEFF", 1.5))
    SCORER_LIQUIDITY_FLOOR: float = float(get_env("SCORER_LIQUIDITY_FLOOR", 5.0))
    SCORER_LIQUIDITY_REFERENCE: float = float(get_env("SCORER_LIQUIDITY_REFERENCE", 80.0))
    SCORER_ETA_HALF_LIFE_HOURS: float = float(get_env("SCORER_ETA_HALF_LIFE_HOURS", 2.0))

    RETENTION_DAYS: int = int(get_env("RETENTION_DAYS", 30))

    # read-through cache; Redis tier only when a URL is given
    CACHE_TTL_SECONDS: int = int(get_env("CACHE_TTL_SECONDS", 300))
    CACHE_MAX_ENTRIES: int = int(get_env("CACHE_MAX_ENTRIES", 10000))
    CACHE_REDIS_URL: str = get_env("CACHE_REDIS_URL", "")
    CACHE_REDIS_PREFIX: str = get_env("CACHE_REDIS_PREFIX", "flip:")

    SCHEDULER_ENABLED: bool = get_bool("SCHEDULER_ENABLED", False)
    LOG_LEVEL: str = get_env("LOG_LEVEL", "INFO")

    API_TITLE: str = get_env("API_TITLE", "Exchange Flip Analytics API")
    API_VERSION: str = get_env("API_VERSION", "1.0.0")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+pymysql://{self.MYSQL_USER}:{self.MYSQL_PASSWORD}@"
            f"{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}?charset=utf8mb4"
        )

    def scorer_config(self) -> ScorerConfig:
        return ScorerConfig(
            competition_coeff=self.SCORER_COMPETITION_COEFF,
            risk_penalty_coeff=self.SCORER_RISK_PENALTY_COEFF,
            liquidity_floor=self.SCORER_LIQUIDITY_FLOOR,
            liquidity_reference=self.SCORER_LIQUIDITY_REFERENCE,
            eta_half_life_hours=self.SCORER_ETA_HALF_LIFE_HOURS,
        )

def get_settings() -> Settings:
    return Settings()
