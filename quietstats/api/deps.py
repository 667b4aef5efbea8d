import os
from functools import lru_cache
from pathlib import Path

from fastapi import Depends

from quietstats.app_shell.context import ServiceContext
from quietstats.core.services.collect import CollectService
from quietstats.core.services.stats import StatsService
from quietstats.rules.loader import load_rules
from quietstats.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("QUIETSTATS_DATA_DIR", "./data"))
        self.rules_path = Path(
            os.environ.get("QUIETSTATS_RULES_PATH", str(self.base_dir / "rules.yaml"))
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules() -> Rules:
    return load_rules(get_settings().rules_path)


# --- Context ---
@lru_cache
def get_context() -> ServiceContext:
    """One process-wide context, so caches and the in-memory store are shared."""
    return ServiceContext.create(get_rules(), data_dir=get_settings().data_dir)


# --- Services ---
def get_collect_service(ctx: ServiceContext = Depends(get_context)) -> CollectService:
    return ctx.collect_service


def get_stats_service(ctx: ServiceContext = Depends(get_context)) -> StatsService:
    return ctx.stats_service
