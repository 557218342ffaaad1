"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="DBaaS Controller", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production/testing)")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=20201, ge=1, le=65535, description="Server port")
    reload: bool = Field(default=False, description="Auto-reload on code changes")

    # Cluster tool (kubectl)
    kubectl_path: str = Field(
        default="/opt/dbaas-tools/bin/kubectl-1.16",
        description="Default kubectl binary used to probe the server version",
    )
    kubectl_dev_command: str = Field(
        default="minikube kubectl --",
        description="Fallback kubectl command for local development environments",
    )
    kubectl_timeout_seconds: float = Field(
        default=120.0, gt=0, description="Hard timeout for a single kubectl invocation"
    )
    k8s_namespace: Optional[str] = Field(
        default=None, description="Namespace passed to kubectl (None uses the kubeconfig context)"
    )

    # Custom resource templates
    pxc_cr_template_path: str = Field(
        default="/srv/dbaas/crs/pxc.cr.yml", description="Optional XtraDB CR template"
    )
    psmdb_cr_template_path: str = Field(
        default="/srv/dbaas/crs/psmdb.cr.yml", description="Optional PSMDB CR template"
    )
    pxc_template_secret_name: Optional[str] = Field(
        default=None, description="Secret cloned as the base of every new XtraDB cluster secret"
    )
    psmdb_template_secret_name: Optional[str] = Field(
        default=None, description="Secret cloned as the base of every new PSMDB cluster secret"
    )
    pmm_client_image: str = Field(default="percona/pmm-client:2", description="PMM client sidecar image")

    # Logs
    logs_overall_lines_limit: int = Field(
        default=1000, ge=1, description="Maximum number of log lines returned per request"
    )
    logs_tail_lines: int = Field(
        default=3000, ge=1, description="Lines fetched per container before trimming"
    )

    # Monitoring
    prometheus_enabled: bool = Field(default=True, description="Enable Prometheus metrics")

    # Sentry
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    sentry_traces_sample_rate: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Sentry traces sample rate"
    )

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"], description="CORS allowed origins"
    )
    cors_allow_credentials: bool = Field(default=True, description="CORS allow credentials")
    cors_allow_methods: List[str] = Field(default=["*"], description="CORS allowed methods")
    cors_allow_headers: List[str] = Field(default=["*"], description="CORS allowed headers")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "staging", "production", "testing"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == "development"


# Global settings instance
settings = Settings()
