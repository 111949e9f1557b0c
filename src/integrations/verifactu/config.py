"""Engine configuration — decides between simulated and live synchronization.

Resolved once per process from settings and passed explicitly to the client,
orchestrator and HTTP layer. There is no runtime toggle: restart the process
with a different VERIFACTU_API_KEY to change mode.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import BaseModel

from src.config import Settings, settings
from src.decoders.tax_id import validate_tax_id
from src.models.enums import SyncMode

logger = logging.getLogger(__name__)

# Values shipped in sample .env files, treated as "no key configured".
PLACEHOLDER_API_KEYS = frozenset({"", "demo", "changeme", "your-api-key"})


class ConfigurationError(RuntimeError):
    """Live-mode configuration that cannot work. Never downgraded to simulation."""


class EngineConfiguration(BaseModel):
    """Immutable, process-wide view of how to reach Verifactu."""

    api_base_url: str
    api_key: str | None = None
    mode: SyncMode
    timeout: float = 10.0

    model_config = {"frozen": True}

    @property
    def is_simulated(self) -> bool:
        return self.mode is SyncMode.SIMULATED


def resolve_engine_configuration(source: Settings) -> EngineConfiguration:
    """Build the engine configuration from settings.

    Raises:
        ConfigurationError: If a real API key is present but the rest of the
            live configuration is unusable.
    """
    cfg = source.verifactu
    raw_key = cfg.verifactu_api_key.strip()
    api_url = cfg.verifactu_api_url.rstrip("/")

    if raw_key.lower() in PLACEHOLDER_API_KEYS:
        logger.warning("Verifactu running in SIMULATION mode (no API key configured)")
        return EngineConfiguration(
            api_base_url=api_url,
            api_key=None,
            mode=SyncMode.SIMULATED,
            timeout=cfg.verifactu_timeout,
        )

    if any(ch.isspace() for ch in raw_key):
        msg = "VERIFACTU_API_KEY contains whitespace"
        raise ConfigurationError(msg)

    parsed = urlparse(api_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        msg = f"VERIFACTU_API_URL is not an http(s) URL: {api_url!r}"
        raise ConfigurationError(msg)

    if cfg.company_nif and not validate_tax_id(cfg.company_nif):
        msg = "COMPANY_NIF is not a valid NIF/CIF"
        raise ConfigurationError(msg)

    logger.info("Verifactu running in LIVE mode (api=%s)", api_url)
    return EngineConfiguration(
        api_base_url=api_url,
        api_key=raw_key,
        mode=SyncMode.LIVE,
        timeout=cfg.verifactu_timeout,
    )


@lru_cache(maxsize=1)
def get_engine_configuration() -> EngineConfiguration:
    """Process-wide configuration, resolved on first use."""
    return resolve_engine_configuration(settings)
