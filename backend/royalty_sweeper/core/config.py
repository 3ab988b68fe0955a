from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from royalty_sweeper.core.exceptions import ConfigError


class Settings(BaseSettings):
    """Sweeper settings."""

    # Ledger
    CEDRA_NODE_URL: str = "https://testnet.cedra.dev"
    CEDRA_PRIVATE_KEY: Optional[str] = None
    CEDRA_ACCOUNT_ADDRESS: Optional[str] = None
    CVN1_ADDRESS: Optional[str] = None

    # Transactions
    TIMEOUT_SECS: int = Field(30, gt=0)
    MAX_GAS_AMOUNT: int = 5_000
    GAS_UNIT_PRICE: int = 100

    # Watch loop
    INTERVAL_SECS: float = Field(5, gt=0)
    BATCH_SIZE: int = Field(20, gt=0)
    MAX_CONCURRENT_QUERIES: int = Field(8, gt=0)
    RECHECK_BEFORE_BATCH: bool = True

    # HTTP
    HTTP_TIMEOUT_SECS: float = 15.0

    # App
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = (".env", "royalty_sweeper/.env")
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def apply_overrides(settings: Optional[Settings], overrides: dict) -> Settings:
    """
    Environment settings with command-line values on top.

    None in overrides means the flag was not given. The merged result is
    validated again, so a flag cannot bypass a field's bounds.

    Raises:
        ConfigError: A value from the environment or a flag is invalid
    """
    updates = {k: v for k, v in overrides.items() if v is not None}
    try:
        base = settings if settings is not None else get_settings()
        if not updates:
            return base
        return Settings(**{**base.model_dump(), **updates})
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
        raise ConfigError(f"invalid settings: {problems}")
