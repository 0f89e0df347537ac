"""Core modules for stepgraph."""

from stepgraph.core.config import GraphConfig, RunConfig, get_config, set_config
from stepgraph.core.logging import configure_logging, LogLevel, LogComponent

__all__ = [
    'GraphConfig',
    'RunConfig',
    'get_config',
    'set_config',
    'configure_logging',
    'LogLevel',
    'LogComponent'
]
