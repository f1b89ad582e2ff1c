"""
Runtime settings read from the environment
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .core.retry import RetryPolicy


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./crm_workflows.db"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Settings:
    """Engine, scheduler and API settings"""
    database_url: str = DEFAULT_DATABASE_URL
    scheduler_interval: float = 60.0
    continuation_lease_seconds: float = 300.0
    scheduler_batch_size: int = 100
    capability_timeout: float = 10.0
    capability_max_attempts: int = 3
    capability_retry_delay: float = 0.5
    trigger_queue_batch_size: int = 10
    trigger_queue_max_retries: int = 3
    trigger_queue_concurrency: int = 4
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False
    email_from: str = "noreply@example.com"
    sms_originator: str = "CRM"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from environment variables, optionally loading ``.env`` first"""
        if dotenv:
            load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            scheduler_interval=float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60")),
            continuation_lease_seconds=float(os.getenv("CONTINUATION_LEASE_SECONDS", "300")),
            scheduler_batch_size=int(os.getenv("SCHEDULER_BATCH_SIZE", "100")),
            capability_timeout=float(os.getenv("CAPABILITY_TIMEOUT_SECONDS", "10")),
            capability_max_attempts=int(os.getenv("CAPABILITY_MAX_ATTEMPTS", "3")),
            capability_retry_delay=float(os.getenv("CAPABILITY_RETRY_DELAY_SECONDS", "0.5")),
            trigger_queue_batch_size=int(os.getenv("TRIGGER_QUEUE_BATCH_SIZE", "10")),
            trigger_queue_max_retries=int(os.getenv("TRIGGER_QUEUE_MAX_RETRIES", "3")),
            trigger_queue_concurrency=int(os.getenv("TRIGGER_QUEUE_CONCURRENCY", "4")),
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "8000")),
            api_reload=_env_bool("API_RELOAD", "false"),
            email_from=os.getenv("EMAIL_FROM", "noreply@example.com"),
            sms_originator=os.getenv("SMS_ORIGINATOR", "CRM"),
        )

    def retry_policy(self) -> RetryPolicy:
        """Retry policy for capability calls"""
        return RetryPolicy(
            max_attempts=self.capability_max_attempts,
            timeout=self.capability_timeout,
            initial_delay=self.capability_retry_delay
        )
