import os
from dataclasses import dataclass
from decimal import Decimal


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal((os.getenv(name) or default).strip())


def make_async_db_url(url: str) -> str:
    """Accepts Railway-style DATABASE_URL and returns sqlalchemy async url."""
    if url.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
        return url
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://") :]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://") :]
    raise RuntimeError("Unsupported DATABASE_URL format")


@dataclass(frozen=True)
class Settings:
    database_url: str | None
    log_level: str = "INFO"
    # echo SQL (debug only)
    db_echo: bool = False

    # Referral program
    referral_commission_percentage: Decimal = Decimal("0.5")
    referral_program_years: int = 2

    # Default deal percentages (used when a deal is created without explicit values)
    contract_agent_percentage: Decimal = Decimal("3.00")
    contract_curator_percentage: Decimal = Decimal("2.00")
    order_agent_percentage: Decimal = Decimal("5.00")
    order_curator_percentage: Decimal = Decimal("5.00")

    # pg_advisory_xact_lock(namespace, user_id) for payout linking
    bonus_lock_namespace: int = 4_172_031


def _load_settings() -> Settings:
    database_url_raw = (os.getenv("DATABASE_URL") or "").strip()

    return Settings(
        database_url=make_async_db_url(database_url_raw) if database_url_raw else None,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        db_echo=_env_bool("DB_ECHO", False),

        # Referrals
        referral_commission_percentage=_env_decimal("REFERRAL_COMMISSION_PERCENTAGE", "0.5"),
        referral_program_years=int(os.getenv("REFERRAL_PROGRAM_YEARS", "2")),

        # Deals
        contract_agent_percentage=_env_decimal("CONTRACT_AGENT_PERCENTAGE", "3.00"),
        contract_curator_percentage=_env_decimal("CONTRACT_CURATOR_PERCENTAGE", "2.00"),
        order_agent_percentage=_env_decimal("ORDER_AGENT_PERCENTAGE", "5.00"),
        order_curator_percentage=_env_decimal("ORDER_CURATOR_PERCENTAGE", "5.00"),

        bonus_lock_namespace=int(os.getenv("BONUS_LOCK_NAMESPACE", "4172031")),
    )


settings = _load_settings()
