import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        upload_dir: Path,
        default_currency: str,
        gemini_api_key: Optional[str],
        gemini_model: str,
        ai_timeout_secs: float,
        ai_max_attempts: int,
        ai_backoff_secs: float,
        alert_cooldown_secs: int,
        sweep_interval_hours: int,
        sweep_startup_delay_secs: int,
        scheduler_enabled: bool,
        smtp_host: Optional[str],
        smtp_port: int,
        smtp_user: Optional[str],
        smtp_password: Optional[str],
        smtp_sender: str,
        smtp_starttls: bool,
        frontend_url: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.upload_dir = upload_dir
        self.default_currency = default_currency
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.ai_timeout_secs = ai_timeout_secs
        self.ai_max_attempts = ai_max_attempts
        self.ai_backoff_secs = ai_backoff_secs
        self.alert_cooldown_secs = alert_cooldown_secs
        self.sweep_interval_hours = sweep_interval_hours
        self.sweep_startup_delay_secs = sweep_startup_delay_secs
        self.scheduler_enabled = scheduler_enabled
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_sender = smtp_sender
        self.smtp_starttls = smtp_starttls
        self.frontend_url = frontend_url


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDWISE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spendwise.db"
    database_url = os.getenv("SPENDWISE_DATABASE_URL", f"sqlite:///{default_db}")
    upload_dir = Path(
        os.getenv("SPENDWISE_UPLOAD_DIR", str(data_dir / "uploads"))
    ).resolve()
    return Settings(
        database_url=database_url,
        timezone=os.getenv("SPENDWISE_TIMEZONE", "Asia/Kolkata"),
        upload_dir=upload_dir,
        default_currency=os.getenv("SPENDWISE_DEFAULT_CURRENCY", "INR"),
        gemini_api_key=os.getenv("SPENDWISE_GEMINI_API_KEY") or None,
        gemini_model=os.getenv("SPENDWISE_GEMINI_MODEL", "gemini-1.5-flash-latest"),
        ai_timeout_secs=float(os.getenv("SPENDWISE_AI_TIMEOUT_SECS", "30")),
        ai_max_attempts=int(os.getenv("SPENDWISE_AI_MAX_ATTEMPTS", "3")),
        ai_backoff_secs=float(os.getenv("SPENDWISE_AI_BACKOFF_SECS", "2")),
        alert_cooldown_secs=int(os.getenv("SPENDWISE_ALERT_COOLDOWN_SECS", "3600")),
        sweep_interval_hours=int(os.getenv("SPENDWISE_SWEEP_INTERVAL_HOURS", "6")),
        sweep_startup_delay_secs=int(
            os.getenv("SPENDWISE_SWEEP_STARTUP_DELAY_SECS", "5")
        ),
        scheduler_enabled=_flag("SPENDWISE_SCHEDULER_ENABLED", "1"),
        smtp_host=os.getenv("SPENDWISE_SMTP_HOST") or None,
        smtp_port=int(os.getenv("SPENDWISE_SMTP_PORT", "587")),
        smtp_user=os.getenv("SPENDWISE_SMTP_USER") or None,
        smtp_password=os.getenv("SPENDWISE_SMTP_PASSWORD") or None,
        smtp_sender=os.getenv("SPENDWISE_SMTP_SENDER", "alerts@spendwise.local"),
        smtp_starttls=_flag("SPENDWISE_SMTP_STARTTLS", "1"),
        frontend_url=os.getenv("SPENDWISE_FRONTEND_URL", "http://localhost:3000"),
    )
