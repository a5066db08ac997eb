"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the reconciler happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. cf_api_token -> CF_API_TOKEN). "true"/"false" strings are coerced
      to booleans, so ENABLE_EXPORT=true works as it always has.

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Outside DEBUG, missing Cloudflare credentials are a hard
      startup failure rather than a 401 on the first sync.

Layer rule: core/ is the kernel. This module may not import from api/ or snapshot/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tlsreconciler.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'tls_reconciler.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Cloudflare
    # ------------------------------------------------------------------

    cf_api_token: str = ""
    zone_id: str = ""
    cf_api_base: str = "https://api.cloudflare.com/client/v4"
    # Per-call timeout in seconds. The engine adds no deadline of its own.
    cf_timeout: float = 30.0

    # ------------------------------------------------------------------
    # Component switches -- checked by the API and CLI, never by the engine
    # ------------------------------------------------------------------

    enable_export: bool = False
    enable_update: bool = False

    # ------------------------------------------------------------------
    # Rate limiting for the trigger endpoints
    # ------------------------------------------------------------------

    trigger_rate_limit: str = "6/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_credentials(self) -> "Settings":
        """Require CF_API_TOKEN and ZONE_ID unless running with DEBUG=true.

        Dev mode only warns: the HTTP surface and /init still work, and any
        remote call fails with a Cloudflare auth error instead.
        """
        missing = [name for name, value in (("CF_API_TOKEN", self.cf_api_token), ("ZONE_ID", self.zone_id)) if not value]
        if missing:
            if self.debug:
                logger.warning("Missing %s -- remote calls will fail until configured.", ", ".join(missing))
            else:
                raise ValueError(
                    f"{', '.join(missing)} required in production mode. "
                    "Set them in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
