"""
Ingestion layer — rate-limited, retrying HTTP clients for the metagame providers.

Submodules:
  rate_limiter          — RateLimitedQueue: sliding-window request pacing
  retry                 — shared exponential backoff (tenacity) for all providers
  base                  — ProviderClient contract, RawPayload, FetchResult
  metatft_client        — MetaTFT-shaped provider
  tactics_tools_client  — TacticsTools-shaped provider

Credential placement (.env, gitignored):
  METATFT_API_KEY         — sent as the ``apiKey`` query parameter
  TACTICS_TOOLS_API_KEY   — sent as the ``apiKey`` query parameter
"""

from tft_meta_sync.ingestion.base import FetchResult, ProviderClient, RawPayload
from tft_meta_sync.ingestion.metatft_client import MetaTftClient
from tft_meta_sync.ingestion.rate_limiter import RateLimitedQueue
from tft_meta_sync.ingestion.tactics_tools_client import TacticsToolsClient

PROVIDER_CLASSES: dict[str, type[ProviderClient]] = {
    MetaTftClient.source: MetaTftClient,
    TacticsToolsClient.source: TacticsToolsClient,
}

__all__ = [
    "FetchResult",
    "MetaTftClient",
    "PROVIDER_CLASSES",
    "ProviderClient",
    "RateLimitedQueue",
    "RawPayload",
    "TacticsToolsClient",
]
