# runtime settings, read once from environment variables
import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class Settings:
    """
    Knobs for storage and checkout behaviour.

    Fields:
      - db_path: sqlite file, created on first connect
      - busy_timeout: seconds a connection waits for the write lock
      - tx_timeout: seconds an order transaction may take before rollback
      - idempotency_window: seconds a checkout key keeps returning the same order
      - seed: load the demo catalog when initializing an empty database
      - log_level: logging level name used when DEBUG is not set
    """

    db_path: str = "data/market.sqlite"
    busy_timeout: float = 5.0
    tx_timeout: float = 10.0
    idempotency_window: float = 600.0
    seed: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.getenv("MARKET_DB_PATH", cls.db_path),
            busy_timeout=_env_float("MARKET_BUSY_TIMEOUT", cls.busy_timeout),
            tx_timeout=_env_float("MARKET_TX_TIMEOUT", cls.tx_timeout),
            idempotency_window=_env_float(
                "MARKET_IDEMPOTENCY_WINDOW", cls.idempotency_window
            ),
            seed=_env_bool("MARKET_SEED", cls.seed),
            log_level=os.getenv("MARKET_LOG_LEVEL", cls.log_level).upper(),
        )


settings = Settings.from_env()
