"""Configuration loading for the EMERS commands.

Each command module provides:
- Configuration loading and validation
- Conversion into the typed config models in :mod:`emers.types`
"""

from emers.commands.config import load_emers_config, parse_emers_config
from emers.commands.detect_events import load_detect_config

__all__ = [
    "load_emers_config",
    "parse_emers_config",
    "load_detect_config",
]
