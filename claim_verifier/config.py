"""Runtime settings, read from the environment (and a local .env file)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./claims.db"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-5"
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24
    agent_timeout_seconds: float = 10.0
    pipeline_budget_seconds: float = 25.0
    verification_lock_ttl_seconds: float = 300.0
    preflight_box_degrees: float = 0.001
    notification_webhook_url: Optional[str] = None
    verification_credit_cost: int = 1
    log_level: str = "INFO"

    @property
    def ai_configured(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> Settings:
        load_dotenv()
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", cls.jwt_secret_key),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", cls.jwt_algorithm),
            jwt_expiration_hours=int(os.getenv("JWT_EXPIRATION_HOURS", cls.jwt_expiration_hours)),
            agent_timeout_seconds=float(
                os.getenv("AGENT_TIMEOUT_SECONDS", cls.agent_timeout_seconds)
            ),
            pipeline_budget_seconds=float(
                os.getenv("PIPELINE_BUDGET_SECONDS", cls.pipeline_budget_seconds)
            ),
            verification_lock_ttl_seconds=float(
                os.getenv("VERIFICATION_LOCK_TTL_SECONDS", cls.verification_lock_ttl_seconds)
            ),
            preflight_box_degrees=float(
                os.getenv("PREFLIGHT_BOX_DEGREES", cls.preflight_box_degrees)
            ),
            notification_webhook_url=os.getenv("NOTIFICATION_WEBHOOK_URL") or None,
            verification_credit_cost=int(
                os.getenv("VERIFICATION_CREDIT_COST", cls.verification_credit_cost)
            ),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
