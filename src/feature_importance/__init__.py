from ._config import config_context, get_config, set_config
from .exceptions import InvalidInputError, ModelError

__all__ = [
    "get_config",
    "set_config",
    "config_context",
    "InvalidInputError",
    "ModelError",
]
