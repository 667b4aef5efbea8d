from pydantic import BaseModel, Field


class ProjectRules(BaseModel):
    slug: str
    rules_version: str

class IdentityRules(BaseModel):
    salt_prefix: str = "analytics"
    respect_dnt: bool = True
    exclude_bots: bool = True
    exclude_private_ips: bool = False

class SessionsRules(BaseModel):
    cache_ttl_minutes: int = Field(default=30, ge=1)
    store_fallback: bool = True

class AggregationRules(BaseModel):
    default_range_days: int = Field(default=30, ge=1)
    month_threshold_days: int = Field(default=90, ge=1)
    realtime_window_minutes: int = Field(default=5, ge=1)
    realtime_ttl_minutes: int = Field(default=60, ge=1)

class ValidationRules(BaseModel):
    max_event_name_length: int = Field(default=255, ge=1)
    max_properties: int = Field(default=50, ge=0)
    reserved_event_names: list[str] = Field(default_factory=list)

class StorageRules(BaseModel):
    backend: str = Field(default="memory", pattern="^(memory|sqlite)$")
    sqlite_path: str = "quietstats.db"

class Rules(BaseModel):
    project: ProjectRules
    identity: IdentityRules = Field(default_factory=IdentityRules)
    sessions: SessionsRules = Field(default_factory=SessionsRules)
    aggregation: AggregationRules = Field(default_factory=AggregationRules)
    validation: ValidationRules = Field(default_factory=ValidationRules)
    storage: StorageRules = Field(default_factory=StorageRules)
