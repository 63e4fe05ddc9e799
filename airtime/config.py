"""Configuration - service settings loaded from the environment."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
load_dotenv()


@dataclass
class Settings:
    """Service settings"""

    # Server
    host: str = "0.0.0.0"
    port: int = 8790
    debug: bool = False
    log_level: str = "INFO"

    # Storage
    data_dir: Path = field(default_factory=lambda: Path.home() / ".airtime" / "data")

    # Delivery
    delivery_concurrency: int = 10
    delivery_timeout_seconds: float = 30.0
    webhook_url: Optional[str] = None

    # Display timezone for air times in notifications
    timezone: str = "Asia/Shanghai"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "airtime.db"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables"""
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8790")),
            debug=os.getenv("DEBUG", "").lower() in ("1", "true"),
            log_level=os.getenv("AIRTIME_LOG_LEVEL", "INFO").upper(),

            data_dir=Path(os.getenv(
                "AIRTIME_DATA_DIR", str(Path.home() / ".airtime" / "data")
            )).expanduser(),

            delivery_concurrency=max(1, int(os.getenv("AIRTIME_DELIVERY_CONCURRENCY", "10"))),
            delivery_timeout_seconds=float(os.getenv("AIRTIME_DELIVERY_TIMEOUT", "30")),
            webhook_url=os.getenv("AIRTIME_WEBHOOK_URL") or None,

            timezone=os.getenv("AIRTIME_TIMEZONE", "Asia/Shanghai"),
        )


# Global settings instance
settings = Settings.from_env()
