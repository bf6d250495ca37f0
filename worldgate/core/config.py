import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

from worldgate.features.plans.service import MIN_EVENT_RETENTION

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Plan/usage store
    PLAN_STORE: str = "memory"  # memory | sql
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Entitlement gate
    ENTITLEMENTS_FAIL_OPEN: bool = True
    USAGE_EVENT_RETENTION: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Admin access (plan changes, scheduled resets)
    ADMIN_KEY: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("worldgate")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    problems = []
    store = str(getattr(cfg, "PLAN_STORE", "memory")).lower()
    if store not in {"memory", "sql"}:
        problems.append(f"PLAN_STORE must be 'memory' or 'sql', got {store!r}")
    if store == "sql" and not (cfg.DATABASE_URL or cfg.TEST_DATABASE_URL):
        problems.append("Missing required configuration: DATABASE_URL")
    if not cfg.ADMIN_KEY:
        problems.append("Missing required configuration: ADMIN_KEY")
    if cfg.USAGE_EVENT_RETENTION < MIN_EVENT_RETENTION:
        problems.append(
            f"USAGE_EVENT_RETENTION must be at least {MIN_EVENT_RETENTION} "
            "(the largest per-minute ceiling) for rate limits to apply"
        )

    if problems:
        message = "; ".join(problems)
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not cfg.ENTITLEMENTS_FAIL_OPEN:
        log.info("[config] entitlement gate will fail closed on store errors")

    return True
