"""Upstream endpoint selection."""

from genai_proxy.config import Config


def resolve_base_url(config: Config) -> str:
    """Pick the upstream base URL: override, then telemetry relay, then default."""
    if config.base_url:
        return config.base_url
    if config.helicone_api_key:
        return config.relay_base_url
    return config.default_base_url
