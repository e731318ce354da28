from pydantic_settings import BaseSettings

from answer_sync.errors import ConfigurationError


class Settings(BaseSettings):
    # Supabase (execution + result store)
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # BrightData snapshot polling
    brightdata_api_key: str = ""
    brightdata_base_url: str = "https://api.brightdata.com/datasets/v3"
    snapshot_poll_timeout_s: float = 30.0
    snapshot_wait_max_attempts: int = 60
    snapshot_wait_interval_s: float = 10.0

    # Reconciliation sweep
    async_collector_types: str = "Bing Copilot,Grok"
    outstanding_statuses: str = "failed,running"
    sweep_lookback_hours: int = 24
    sweep_deadline_s: float = 600.0  # 0 disables the deadline
    sweep_max_parallel: int = 1
    extract_urls_from_text: bool = True

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def async_collector_type_list(self) -> list[str]:
        return [t.strip() for t in self.async_collector_types.split(",") if t.strip()]

    @property
    def outstanding_status_list(self) -> list[str]:
        return [s.strip() for s in self.outstanding_statuses.split(",") if s.strip()]

    def require(self, *names: str) -> None:
        """Raise ConfigurationError if any of the named fields is empty."""
        missing = [name for name in names if not str(getattr(self, name, "") or "").strip()]
        if missing:
            env_names = ", ".join(name.upper() for name in missing)
            raise ConfigurationError(f"Missing required configuration: {env_names}")


settings = Settings()
