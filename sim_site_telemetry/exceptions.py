"""
Exception hierarchy for the telemetry engine.

The orchestrator distinguishes three failure classes:

* :class:`ConfigurationError` is fatal and raised before any site is touched
  (for example a missing scheduler secret).
* :class:`ProviderError` signals that an external data source (weather) could
  not answer. Callers recover locally with a fallback value.
* :class:`PerSiteError` wraps anything that went wrong while producing the
  reading of a single site. It is logged and counted, never propagated out of
  a batch.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for every error raised by the telemetry engine."""


class ConfigurationError(TelemetryError):
    """Required configuration (credentials, settings) is missing or invalid."""


class ProviderError(TelemetryError):
    """An external provider (weather archive) failed to deliver data."""


class PerSiteError(TelemetryError):
    """
    Failure while generating the reading of one site.

    Attributes:
        site_id: Identifier of the site whose tick failed.
    """

    def __init__(self, site_id: int, message: str) -> None:
        super().__init__(f"site {site_id}: {message}")
        self.site_id = site_id
