# === NAVMAP v1 ===
# {
#   "module": "AnnBench.VectorRecall.config",
#   "purpose": "Pydantic v2 settings for benchmark runs.",
#   "sections": [
#     {
#       "id": "enums",
#       "name": "LogLevel / LogFormat / StoreBackend",
#       "anchor": "class-loglevel",
#       "kind": "class"
#     },
#     {
#       "id": "appcfg",
#       "name": "AppCfg",
#       "anchor": "class-appcfg",
#       "kind": "class"
#     },
#     {
#       "id": "dispatchcfg",
#       "name": "DispatchCfg",
#       "anchor": "class-dispatchcfg",
#       "kind": "class"
#     },
#     {
#       "id": "datasetcfg",
#       "name": "DatasetCfg",
#       "anchor": "class-datasetcfg",
#       "kind": "class"
#     },
#     {
#       "id": "cqlcfg",
#       "name": "CqlCfg",
#       "anchor": "class-cqlcfg",
#       "kind": "class"
#     },
#     {
#       "id": "settings",
#       "name": "Settings",
#       "anchor": "class-settings",
#       "kind": "class"
#     },
#     {
#       "id": "load-settings",
#       "name": "load_settings",
#       "anchor": "function-load-settings",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Layered configuration for benchmark runs.

Every group reads ``ANNBENCH_<GROUP>_<FIELD>`` environment variables (the app
group uses plain ``ANNBENCH_``). CLI flags are applied on top through
:func:`load_settings` overrides, giving CLI > ENV > defaults precedence.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

__all__ = [
    "AppCfg",
    "CqlCfg",
    "DatasetCfg",
    "DispatchCfg",
    "LogFormat",
    "LogLevel",
    "Settings",
    "StoreBackend",
    "load_settings",
]


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogFormat(str, Enum):
    """Console or JSON-lines log output."""

    CONSOLE = "console"
    JSON = "json"


class StoreBackend(str, Enum):
    """Vector store the benchmark runs against."""

    MEMORY = "memory"
    CQL = "cql"


def _expand_path(value: Any) -> Any:
    if isinstance(value, str):
        return Path(value).expanduser()
    if isinstance(value, Path):
        return value.expanduser()
    return value


class AppCfg(BaseSettings):
    """Global application-level configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ANNBENCH_",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: LogLevel = Field(LogLevel.INFO, description="Root logging level")
    log_format: LogFormat = Field(LogFormat.CONSOLE, description="Console text or JSON lines")
    log_dir: Optional[Path] = Field(
        None, description="Directory for rotating JSONL logs (disabled when unset)"
    )

    @field_validator("log_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: Any) -> Any:
        return _expand_path(v)


class DispatchCfg(BaseSettings):
    """Bounded dispatcher tuning."""

    model_config = SettingsConfigDict(
        env_prefix="ANNBENCH_DISPATCH_",
        case_sensitive=False,
        extra="ignore",
    )

    max_in_flight: int = Field(100, description="Maximum outstanding store operations", ge=1)
    operation_timeout_s: float = Field(
        0.0, description="Per-operation timeout in seconds (0 = disabled)", ge=0
    )

    @property
    def timeout_or_none(self) -> Optional[float]:
        return self.operation_timeout_s or None


class DatasetCfg(BaseSettings):
    """Location and shape of the benchmark corpus."""

    model_config = SettingsConfigDict(
        env_prefix="ANNBENCH_DATASET_",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: Path = Field(Path("data/sift"), description="Directory holding the dataset files")
    base_file: str = Field("base.fvecs", description="Vectors ingested into the store")
    query_file: str = Field("query.fvecs", description="Query vectors")
    ground_truth_file: str = Field("groundtruth.ivecs", description="True neighbour ids per query")
    top_k: int = Field(100, description="Neighbours requested per query (K)", ge=1)
    dimension: int = Field(128, description="Expected vector dimension", ge=1)
    min_recall: float = Field(0.975, description="Recall@K threshold for a passing run", ge=0, le=1)

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: Any) -> Any:
        return _expand_path(v)

    @property
    def base_path(self) -> Path:
        return self.data_dir / self.base_file

    @property
    def query_path(self) -> Path:
        return self.data_dir / self.query_file

    @property
    def ground_truth_path(self) -> Path:
        return self.data_dir / self.ground_truth_file


class CqlCfg(BaseSettings):
    """Cassandra / DataStax connection and schema settings."""

    model_config = SettingsConfigDict(
        env_prefix="ANNBENCH_CQL_",
        case_sensitive=False,
        extra="ignore",
    )

    contact_points: str = Field(
        "127.0.0.1", description="Comma-separated cluster contact points"
    )
    port: int = Field(9042, description="Native protocol port", ge=1, le=65535)
    keyspace: str = Field("testing", description="Keyspace holding the benchmark table")
    table: str = Field("sifttest", description="Benchmark table name")
    replication_factor: int = Field(1, description="SimpleStrategy replication factor", ge=1)
    truncate: bool = Field(True, description="Truncate the table before ingesting")
    connect_retries: int = Field(3, description="Connection attempts before giving up", ge=1)
    request_timeout_s: float = Field(30.0, description="Driver request timeout", gt=0)

    @field_validator("contact_points", mode="before")
    @classmethod
    def join_contact_points(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return ",".join(str(part) for part in value)
        return value

    @field_validator("keyspace", "table")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        if not value or not value.replace("_", "").isalnum() or value[0].isdigit():
            raise ValueError(f"not a valid CQL identifier: {value!r}")
        return value

    @model_validator(mode="after")
    def validate_contact_points(self) -> "CqlCfg":
        if not self.hosts:
            raise ValueError("at least one contact point is required")
        return self

    @property
    def hosts(self) -> list[str]:
        return [part.strip() for part in self.contact_points.split(",") if part.strip()]


class Settings(BaseModel):
    """Aggregated configuration for one benchmark run."""

    store: StoreBackend = Field(StoreBackend.MEMORY, description="Vector store backend")
    app: AppCfg = Field(default_factory=AppCfg)
    dispatch: DispatchCfg = Field(default_factory=DispatchCfg)
    dataset: DatasetCfg = Field(default_factory=DatasetCfg)
    cql: CqlCfg = Field(default_factory=CqlCfg)


def _nest(overrides: Mapping[str, Any]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for dotted, value in overrides.items():
        if value is None:
            continue
        group, _, field = dotted.partition(".")
        if not field:
            nested[group] = value
            continue
        nested.setdefault(group, {})[field] = value
    return nested


def load_settings(overrides: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Settings:
    """Build :class:`Settings` from the environment plus explicit overrides.

    Overrides use dotted keys (``"dataset.top_k"``) or keyword arguments with a
    double underscore (``dataset__top_k=10``). ``None`` values are ignored so
    unset CLI options fall through to the environment.

    Raises:
        ConfigurationError: If the resulting configuration does not validate.

    Examples:
        >>> load_settings({"dataset.top_k": 10}).dataset.top_k
        10
    """

    merged: dict[str, Any] = dict(overrides or {})
    merged.update({key.replace("__", "."): value for key, value in kwargs.items()})
    nested = _nest(merged)
    try:
        groups = {
            "app": AppCfg(**nested.pop("app", {})),
            "dispatch": DispatchCfg(**nested.pop("dispatch", {})),
            "dataset": DatasetCfg(**nested.pop("dataset", {})),
            "cql": CqlCfg(**nested.pop("cql", {})),
        }
        return Settings(**groups, **nested)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
