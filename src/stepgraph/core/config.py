"""Configuration for graph execution.

Two layers:

- ``GraphConfig``: process-wide defaults read from ``STEPGRAPH_*`` env vars.
- ``RunConfig``: per-invocation settings (thread, checkpoint, limits).
  ``RunConfig.coerce`` also accepts the plain-dict form
  ``{"configurable": {"thread_id": "t1"}, "recursion_limit": 10}``.
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stepgraph.core.logging import LogLevel


class GraphConfig(BaseSettings):
    """Default execution settings, overridable through the environment."""

    model_config = SettingsConfigDict(
        env_prefix="STEPGRAPH_",
        validate_assignment=True,
        extra="ignore",
    )

    recursion_limit: int = Field(
        default=25,
        gt=0,
        description="Maximum supersteps a single run may execute"
    )
    max_concurrency: Optional[int] = Field(
        default=None,
        gt=0,
        description="Maximum tasks executed concurrently within a superstep"
    )
    checkpoint_dir: Path = Field(
        default=Path(".stepgraph") / "checkpoints",
        description="Base directory used by FileCheckpointStore"
    )
    log_level: LogLevel = Field(default=LogLevel.INFO)


_default_config: Optional[GraphConfig] = None


def get_config() -> GraphConfig:
    """Return the process-wide GraphConfig, loading it on first use."""
    global _default_config
    if _default_config is None:
        _default_config = GraphConfig()
    return _default_config


def set_config(config: Optional[GraphConfig]) -> None:
    """Replace (or with ``None``, reset) the process-wide GraphConfig."""
    global _default_config
    _default_config = config


class RunConfig(BaseModel):
    """Settings for one invocation of a compiled graph.

    Attributes:
        thread_id: Persisted execution identity; required with a checkpointer
        checkpoint_id: Checkpoint to resume, replay or fork from (latest if unset)
        recursion_limit: Superstep ceiling for this run
        max_concurrency: Concurrency cap for tasks within a superstep
        configurable: Free-form values nodes can read from their config
        tags: Labels copied into checkpoint metadata
        metadata: Extra checkpoint metadata
    """
    model_config = ConfigDict(frozen=True)

    thread_id: Optional[str] = None
    checkpoint_id: Optional[str] = None
    recursion_limit: int = Field(default_factory=lambda: get_config().recursion_limit, gt=0)
    max_concurrency: Optional[int] = Field(
        default_factory=lambda: get_config().max_concurrency, gt=0
    )
    configurable: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def coerce(cls, config: Union["RunConfig", Mapping[str, Any], None]) -> "RunConfig":
        """Build a RunConfig from ``None``, a RunConfig, or a dict."""
        if config is None:
            return cls()
        if isinstance(config, RunConfig):
            return config
        data = dict(config)
        configurable = dict(data.pop("configurable", None) or {})
        for key in ("thread_id", "checkpoint_id"):
            if key in configurable and key not in data:
                data[key] = configurable.pop(key)
        data["configurable"] = configurable
        return cls.model_validate(data)

    def merge(self, **changes: Any) -> "RunConfig":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)

    def get(self, key: str, default: Any = None) -> Any:
        """Read a value from ``configurable``."""
        return self.configurable.get(key, default)
