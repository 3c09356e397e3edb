# brewqueue/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Barista pool (fixed for the process lifetime, ids are assigned 1..n)
    worker_names: list[str] = ["Alice", "Bob", "Charlie"]

    # Background loops
    dispatch_loops_enabled: bool = True          # Master switch for both timers
    recalculation_interval_seconds: float = 30.0  # Re-score + escalation sweep
    completion_interval_seconds: float = 1.0      # Auto-complete + timeout complaints

    # Complaint sink
    # "memory" - keep complaints in process (inspectable, lost on restart)
    # "log"    - write complaints to the application log only
    complaint_sink: Literal["memory", "log"] = "memory"

    # Transport
    allowed_origins: list[str] = ["*"]
    enable_request_logging: bool = True

    # Simulator
    simulation_default_trials: int = 10
    simulation_max_trials: int = 100
    simulation_arrival_rate: float = 1.4     # orders per simulated minute
    simulation_horizon_minutes: float = 180.0

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    def validate_required(self) -> list[str]:
        """Return settings that make the dispatcher unusable"""
        problems = []

        if not self.worker_names:
            problems.append("worker_names must contain at least one barista")
        if len(set(self.worker_names)) != len(self.worker_names):
            problems.append("worker_names must be unique")
        if self.recalculation_interval_seconds <= 0:
            problems.append("recalculation_interval_seconds must be positive")
        if self.completion_interval_seconds <= 0:
            problems.append("completion_interval_seconds must be positive")
        if self.simulation_max_trials < 1:
            problems.append("simulation_max_trials must be at least 1")

        return problems


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.is_production and s.complaint_sink == "memory":
        warnings.append("prod: complaint_sink=memory (timeout complaints are lost on restart).")

    if not s.dispatch_loops_enabled:
        warnings.append(
            "dispatch_loops_enabled=False: orders will only move on submit, manual completion or /api/recalculate."
        )

    if s.completion_interval_seconds > 10:
        warnings.append(
            f"completion_interval_seconds={s.completion_interval_seconds}: baristas may sit idle between ticks."
        )

    if s.recalculation_interval_seconds > 60:
        warnings.append(
            f"recalculation_interval_seconds={s.recalculation_interval_seconds}: "
            "critical orders may wait well past the 9 minute escalation threshold."
        )

    if s.simulation_default_trials > s.simulation_max_trials:
        warnings.append("simulation_default_trials exceeds simulation_max_trials.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    Fatal settings raise (all environments).
    Risky settings are printed as warnings.
    """
    problems = s.validate_required()

    if problems:
        raise RuntimeError(f"Invalid dispatcher settings: {', '.join(problems)}")

    # Logging is not configured yet at import time
    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
