"""One-call observability setup driven by :class:`kvindex.config.Settings`."""

from __future__ import annotations

from opentelemetry.sdk.trace import TracerProvider

from kvindex.config import Settings
from kvindex.observability.logging import configure_logging
from kvindex.observability.tracing import init_tracing


def configure_observability(
    settings: Settings | None = None,
    *,
    logger_levels: dict[str, str] | None = None,
    resource_attributes: dict[str, str] | None = None,
) -> TracerProvider:
    """Configure root logging and install a tracer provider for the host process.

    The engine never calls this itself; applications embedding kvindex call it
    once at startup.
    """
    settings = settings or Settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs, logger_levels=logger_levels)
    return init_tracing(service_name=settings.service_name, resource_attributes=resource_attributes)
