"""Configuration models and parser for procwire.yaml."""

from procwire.config.models import ProcwireConfig, TraceConfig, WorkerConfig
from procwire.config.parser import ConfigError, load_config

__all__ = [
    "ConfigError",
    "ProcwireConfig",
    "TraceConfig",
    "WorkerConfig",
    "load_config",
]
