"""Configuration models using Pydantic for validation."""
from typing import List, Literal, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os

from loadgen.generators import WaveKind


class WriteClientConfig(BaseModel):
    """Resolved settings for one tenant's write client."""
    model_config = ConfigDict(frozen=True)

    url: str
    tenant_id: str
    series_count: int = Field(default=1000, ge=0)
    # Period during which all series gradually churn, 0 disables churning.
    series_churn_period_s: int = Field(default=0, ge=0)
    extra_labels: int = Field(default=0, ge=0)
    wave_kinds: Tuple[WaveKind, ...] = (WaveKind.SINE,)

    write_interval_s: float = Field(default=10.0, gt=0)
    write_timeout_s: float = Field(default=5.0, gt=0)
    write_concurrency: int = Field(default=10, ge=1)
    write_batch_size: int = Field(default=1000, ge=1)


class QueryClientConfig(BaseModel):
    """Resolved settings for one tenant's query client."""
    model_config = ConfigDict(frozen=True)

    url: str
    tenant_id: str

    query_interval_s: float = Field(default=10.0, gt=0)
    query_timeout_s: float = Field(default=20.0, gt=0)
    query_max_age_s: float = Field(default=3600.0, gt=0)

    expected_series: int = Field(default=1000, ge=0)
    expected_write_interval_s: float = Field(default=10.0, gt=0)

    additional_queries: Tuple[str, ...] = ()


class TenantConfig(BaseModel):
    """Per-tenant client configuration; the query client is optional."""
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    write: WriteClientConfig
    query: Optional[QueryClientConfig] = None


class RemoteWriteSection(BaseModel):
    """Remote write endpoint configuration."""
    url: str = "http://localhost:9009/api/v1/push"
    interval_s: float = Field(default=10.0, gt=0)
    timeout_s: float = Field(default=5.0, gt=0)
    concurrency: int = Field(default=10, ge=1)
    batch_size: int = Field(default=1000, ge=1)


class QuerySection(BaseModel):
    """Read-back verification configuration."""
    enabled: bool = False
    url: str = "http://localhost:9009/prometheus"
    interval_s: float = Field(default=10.0, gt=0)
    timeout_s: float = Field(default=20.0, gt=0)
    max_age_s: float = Field(default=3600.0, gt=0)
    additional_queries: List[str] = Field(default_factory=list)


class TenantsSection(BaseModel):
    """Simulated tenants."""
    count: int = Field(default=1, ge=1)
    id_prefix: str = "load-generator"


class SeriesSection(BaseModel):
    """Shape of the generated series."""
    count: int = Field(default=1000, ge=0)
    extra_labels: int = Field(default=0, ge=0)
    churn_period_s: int = Field(default=0, ge=0)
    kinds: List[WaveKind] = Field(default_factory=lambda: [WaveKind.SINE])

    @field_validator('kinds')
    @classmethod
    def validate_kinds(cls, v):
        if not v:
            raise ValueError("At least one wave kind must be configured")
        if len(v) != len(set(v)):
            raise ValueError("Wave kinds must be unique")
        return v


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    metrics_port: int = 9900
    metrics_bind_address: str = "0.0.0.0"
    control_api_enabled: bool = True
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    remote_write: RemoteWriteSection = Field(default_factory=RemoteWriteSection)
    query: QuerySection = Field(default_factory=QuerySection)
    tenants: TenantsSection = Field(default_factory=TenantsSection)
    series: SeriesSection = Field(default_factory=SeriesSection)

    @model_validator(mode='after')
    def validate_query_timing(self):
        """The query window must be able to cover at least one write interval."""
        if self.query.enabled and self.query.max_age_s <= 2 * self.remote_write.interval_s:
            raise ValueError(
                "query.max_age_s must be greater than twice remote_write.interval_s"
            )
        if self.query.enabled and WaveKind.SINE not in self.series.kinds:
            raise ValueError(
                "series.kinds must include sine when query verification is enabled"
            )
        return self

    def tenant_id(self, n: int) -> str:
        return f"{self.tenants.id_prefix}-{n}"

    def tenant_configs(self) -> List[TenantConfig]:
        """Resolve the immutable per-tenant client configurations."""
        out = []
        for n in range(1, self.tenants.count + 1):
            tenant_id = self.tenant_id(n)

            write = WriteClientConfig(
                url=self.remote_write.url,
                tenant_id=tenant_id,
                series_count=self.series.count,
                series_churn_period_s=self.series.churn_period_s,
                extra_labels=self.series.extra_labels,
                wave_kinds=tuple(self.series.kinds),
                write_interval_s=self.remote_write.interval_s,
                write_timeout_s=self.remote_write.timeout_s,
                write_concurrency=self.remote_write.concurrency,
                write_batch_size=self.remote_write.batch_size,
            )

            query = None
            if self.query.enabled:
                query = QueryClientConfig(
                    url=self.query.url,
                    tenant_id=tenant_id,
                    query_interval_s=self.query.interval_s,
                    query_timeout_s=self.query.timeout_s,
                    query_max_age_s=self.query.max_age_s,
                    expected_series=self.series.count,
                    expected_write_interval_s=self.remote_write.interval_s,
                    additional_queries=tuple(self.query.additional_queries),
                )

            out.append(TenantConfig(tenant_id=tenant_id, write=write, query=query))
        return out


def _override(raw_config: dict, section: str, key: str, value):
    if section not in raw_config or raw_config[section] is None:
        raw_config[section] = {}
    raw_config[section][key] = value


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_url := os.getenv('REMOTE_WRITE_URL'):
        _override(raw_config, 'remote_write', 'url', env_url)

    if env_url := os.getenv('QUERY_URL'):
        _override(raw_config, 'query', 'url', env_url)

    if env_log_level := os.getenv('LOG_LEVEL'):
        _override(raw_config, 'global', 'log_level', env_log_level)

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
