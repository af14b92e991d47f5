"""Imports manager"""

from .const import *  # noqa: F403
from .schema import (
    CONFIG_SCHEMA as CONFIG_SCHEMA,
    default_config as default_config,
    validate_config as validate_config,
)
