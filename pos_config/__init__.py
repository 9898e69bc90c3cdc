"""
pos_config -- single public entrypoint for POS policy.

Responsibility:
    ``get_active_config()`` is the only way to obtain policy at runtime.
    It reads a YAML policy set (the shipped ``sets/default.yaml`` unless a
    path is given), validates it and returns a frozen ``PosPolicy``.

Architecture position:
    Sits above ``pos_kernel`` and below ``pos_modules``.  The kernel,
    engines and services never import from here; module services pass
    the relevant policy sections down.

Audit relevance:
    Every successful load emits a ``POS_CONFIG_TRACE`` record with the
    config id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pos_config.loader import load_yaml_file, parse_policy
from pos_config.schema import (
    LoanPolicy,
    NumberingPolicy,
    PosPolicy,
    StockPolicy,
    TaxPolicy,
)

_logger = logging.getLogger("pos_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_FILE = _DEFAULT_CONFIG_DIR / "default.yaml"


def get_active_config(path: Path | str | None = None) -> PosPolicy:
    """
    Load and validate the active policy.

    Raises:
        FileNotFoundError: If the policy file does not exist.
        InvalidConfigError: If validation fails.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    policy = parse_policy(load_yaml_file(config_path), source=str(config_path))

    _logger.info(
        "POS_CONFIG_TRACE",
        extra={
            "trace_type": "POS_CONFIG_TRACE",
            "config_id": policy.config_id,
            "config_version": policy.version,
            "checksum": policy.checksum,
            "source": str(config_path),
        },
    )
    return policy


__all__ = [
    "get_active_config",
    "PosPolicy",
    "TaxPolicy",
    "StockPolicy",
    "LoanPolicy",
    "NumberingPolicy",
]
