"""
payables_config -- single public entrypoint for payables configuration.

Responsibility:
    Provides the one way to obtain settings at runtime:
    ``get_active_config()``.  Returns a frozen ``EngineSettings``; bridges in
    ``payables_config.bridges`` turn it into engine policies and rate
    resolvers.

Architecture position:
    Configuration -- sits above ``payables_kernel`` / ``payables_engines``
    and beside ``payables_services``.  Engines MUST NEVER import from
    ``payables_config``.

Invariants enforced:
    - Settings are parsed and validated in full before being returned.
    - Same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ValueError`` -- a section holds an unknown key or invalid value.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PAYABLES_CONFIG_TRACE`` log entry with the source path and checksum,
    tying every computed cascade to the rates that governed it.
"""

from __future__ import annotations

from pathlib import Path

from payables_config.loader import load_yaml_file, parse_settings
from payables_config.schema import EngineSettings
from payables_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> EngineSettings:
    """The public configuration entrypoint.

    Contract:
        Reads ``config_path`` (default: the packaged ``defaults.yaml``) and
        returns validated settings.  Nothing is cached; callers hold the
        returned settings for as long as they need them.

    Guarantees:
        A ``PAYABLES_CONFIG_TRACE`` log entry is emitted on every
        successful call.

    Raises:
        FileNotFoundError, yaml.YAMLError, ValueError.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    settings = parse_settings(data, source=str(path))

    _logger.info(
        "PAYABLES_CONFIG_TRACE",
        extra={
            "trace_type": "PAYABLES_CONFIG_TRACE",
            "config_source": settings.source,
            "checksum": settings.checksum,
            "reporting_currency": settings.tax.reporting_currency,
            "rate_policy": settings.tax.rate_policy,
            "category_count": len(settings.rates.withholding_by_category),
            "regime_count": len(settings.rates.levy_by_regime),
        },
    )
    return settings


__all__ = ["DEFAULT_CONFIG_PATH", "EngineSettings", "get_active_config"]
