import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel


class EngineConfig(BaseModel):
    database_url: str = "sqlite:///./booking.db"
    supabase_url: str = ""
    supabase_key: str = ""
    remote_base_url: str = ""
    remote_timeout: float = 10.0
    inventory_max_attempts: int = 3
    log_level: str = "INFO"

    model_config = {"frozen": True}

    @property
    def rest_store_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def load_config() -> EngineConfig:
    """
    Read engine settings from the environment (and a .env file if present).
    """
    load_dotenv()
    return EngineConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./booking.db"),
        supabase_url=os.getenv("SUPABASE_URL", "").rstrip("/"),
        supabase_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_SECRET_KEY") or "").strip(),
        remote_base_url=os.getenv("BOOKING_API_BASE_URL", "").rstrip("/"),
        remote_timeout=float(os.getenv("BOOKING_API_TIMEOUT", "10")),
        inventory_max_attempts=max(1, int(os.getenv("INVENTORY_MAX_ATTEMPTS", "3"))),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
