"""
Central configuration module for the adminer job admission service
Reads and validates environment variables with strict checks for production
"""
import os
import sys
from typing import Optional
from pathlib import Path

# Load environment variables from .env file if it exists (dev only)
from dotenv import load_dotenv

if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DEFAULT_PLANS_FILE = str(Path(__file__).parent / "data" / "plans.yaml")


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "900"))
    DB_POOL_TIMEOUT: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    DB_STATEMENT_TIMEOUT: int = int(os.getenv("DB_STATEMENT_TIMEOUT", "10000"))  # milliseconds

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Webhook secrets
    DODO_WEBHOOK_SECRET: Optional[str] = os.getenv("DODO_WEBHOOK_SECRET")
    WORKER_WEBHOOK_SECRET: Optional[str] = os.getenv("WORKER_WEBHOOK_SECRET")

    # External worker platform
    WORKER_API_BASE: Optional[str] = os.getenv("WORKER_API_BASE")
    WORKER_API_TOKEN: Optional[str] = os.getenv("WORKER_API_TOKEN")
    WORKER_ACTOR_ID: Optional[str] = os.getenv("WORKER_ACTOR_ID")
    WORKER_SUBMIT_TIMEOUT: float = float(os.getenv("WORKER_SUBMIT_TIMEOUT", "15"))
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000")

    # Upgrade references
    CHECKOUT_PRO_URL: Optional[str] = os.getenv("CHECKOUT_PRO_URL")
    CHECKOUT_ENTERPRISE_URL: Optional[str] = os.getenv("CHECKOUT_ENTERPRISE_URL")
    PRICING_URL: str = os.getenv("PRICING_URL", "/pricing")

    # Admin
    ADMIN_API_TOKEN: Optional[str] = os.getenv("ADMIN_API_TOKEN")

    # Reconciler
    RECONCILER_ENABLED: bool = _env_bool("RECONCILER_ENABLED", "true")
    RECONCILER_CRON: str = os.getenv("RECONCILER_CRON", "30 21 * * *")
    DOWNGRADE_DRY_RUN: bool = _env_bool("DOWNGRADE_DRY_RUN", "false")
    RECONCILER_CANDIDATE_TIMEOUT: float = float(os.getenv("RECONCILER_CANDIDATE_TIMEOUT", "5.0"))
    BILLING_AUTODOWNGRADE_ENABLED: bool = _env_bool("BILLING_AUTODOWNGRADE_ENABLED", "true")

    # Jobs
    JOB_MAX_ADS: int = int(os.getenv("JOB_MAX_ADS", "500"))

    # Plan reference data
    PLANS_FILE: str = os.getenv("PLANS_FILE", DEFAULT_PLANS_FILE)

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._validate()

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "test", "staging", "prod"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'test', 'staging', or 'prod'")

        # SQLite is only accepted for local development and the test suite
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required but not set")
        elif not self.DATABASE_URL.startswith("postgresql"):
            if not (self.DATABASE_URL.startswith("sqlite") and self.ENV in ["dev", "test"]):
                errors.append(
                    f"DATABASE_URL must be a PostgreSQL connection string (got: {self.DATABASE_URL[:30]}...)"
                )

        if self.JOB_MAX_ADS < 1:
            errors.append(f"JOB_MAX_ADS must be positive (got: {self.JOB_MAX_ADS})")

        if self.RECONCILER_CANDIDATE_TIMEOUT <= 0:
            errors.append("RECONCILER_CANDIDATE_TIMEOUT must be greater than zero")

        if not Path(self.PLANS_FILE).exists():
            errors.append(f"PLANS_FILE not found: {self.PLANS_FILE}")

        if self.ENV in ["staging", "prod"]:
            if not self.DODO_WEBHOOK_SECRET:
                errors.append(f"DODO_WEBHOOK_SECRET is required in {self.ENV}")
            if not self.WORKER_WEBHOOK_SECRET:
                errors.append(f"WORKER_WEBHOOK_SECRET is required in {self.ENV}")
            if not self.ADMIN_API_TOKEN:
                errors.append(f"ADMIN_API_TOKEN is required in {self.ENV}")
            elif len(self.ADMIN_API_TOKEN) < 32:
                errors.append("ADMIN_API_TOKEN must be at least 32 characters in staging/production")

        # Fail fast in staging/prod
        if errors and self.ENV in ["staging", "prod"]:
            print("=" * 60, file=sys.stderr)
            print("CONFIGURATION VALIDATION FAILED", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ❌ {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            sys.exit(1)

        # Warn in dev/test
        if errors:
            print("=" * 60, file=sys.stderr)
            print(f"CONFIGURATION WARNINGS ({self.ENV} mode - continuing)", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            for error in errors:
                print(f"  ⚠️  {error}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

    def checkout_url(self, plan_code: str) -> Optional[str]:
        """Get the configured checkout URL for a paid plan, if any"""
        return {
            "pro": self.CHECKOUT_PRO_URL,
            "enterprise": self.CHECKOUT_ENTERPRISE_URL,
        }.get(plan_code)


# Create global config instance
config = Config()
