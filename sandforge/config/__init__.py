from .loader import load_settings
from .types import ConfigError, RunConfig, Settings, UsageError

__all__ = ["load_settings", "RunConfig", "Settings", "ConfigError", "UsageError"]
