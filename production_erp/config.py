"""Runtime settings and planning options."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .domain import PlanningStrategy

DEFAULT_SHIFT_START = time(6, 0)
DEFAULT_SHIFT_END = time(22, 0)


class Settings(BaseSettings):
    """Application settings read from ``PRODUCTION_ERP_*`` variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="PRODUCTION_ERP_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    APP_TITLE: str = "Production Planning ERP"
    DATABASE_PATH: str = "erp.sqlite3"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    LOAD_DEMO_DATA: bool = True


@dataclass(slots=True)
class PlanningOptions:
    """Fine-tuning parameters used by the planning engine."""

    strategy: PlanningStrategy = PlanningStrategy.ASAP
    priority_weight: float = 1.0
    due_date_weight: float = 1.0
    horizon_days: int = 0
    max_orders_per_cycle: int = 0
    auto_release_orders: bool = True
    default_start_time: time = field(default_factory=lambda: DEFAULT_SHIFT_START)
    default_end_time: time = field(default_factory=lambda: DEFAULT_SHIFT_END)


__all__ = ["Settings", "PlanningOptions", "DEFAULT_SHIFT_START", "DEFAULT_SHIFT_END"]
