from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

from .services.adjustment_engine import EngineConfig
from .services.flow_detector import FlowDetectionConfig


class Settings(BaseSettings):
    # Application
    app_name: str = "FlowTune"
    debug: bool = False
    api_version: str = "v1"
    log_level: str = "INFO"

    # Database (difficulty state persistence)
    database_url: str = "sqlite+aiosqlite:///./flowtune.db"
    persistence_enabled: bool = True

    # External telemetry service (optional pull source)
    telemetry_api_url: Optional[str] = None
    telemetry_api_key: str = ""
    telemetry_timeout: float = 10.0

    # Adjustment engine
    adjustment_frequency_s: float = 30.0
    minimum_data_points: int = 5
    max_adjustment_magnitude: float = 0.2
    smoothing_factor: float = 0.3
    adjustment_cooldown_s: float = 60.0
    adaptation_window_s: float = 120.0
    validation_period_s: float = 120.0
    emergency_check_interval_s: float = 10.0

    # Flow detection
    flow_detection_interval_s: float = 30.0
    flow_history_window: int = 20

    # Background loops
    run_background_loops: bool = True
    timer_poll_interval_s: float = 1.0
    # Players without a session are dropped after this long without telemetry
    idle_eviction_s: float = 1800.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "FLOWTUNE_"

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            adjustment_frequency_s=self.adjustment_frequency_s,
            minimum_data_points=self.minimum_data_points,
            max_adjustment_magnitude=self.max_adjustment_magnitude,
            smoothing_factor=self.smoothing_factor,
            cooldown_s=self.adjustment_cooldown_s,
            adaptation_window_s=self.adaptation_window_s,
            validation_period_s=self.validation_period_s,
            emergency_check_interval_s=self.emergency_check_interval_s,
        )

    def flow_config(self) -> FlowDetectionConfig:
        return FlowDetectionConfig(
            detection_interval_s=self.flow_detection_interval_s,
            historical_data_window=self.flow_history_window,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
