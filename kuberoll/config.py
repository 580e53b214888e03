from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    KUBECTL: str = "kubectl"
    NAMESPACE: str | None = None
    KUBECONFIG: str | None = None
    TIMEOUT_SECONDS: float = 600
    POLL_INTERVAL_SECONDS: float = 5.0
    RETRY_DELAY_SECONDS: float = 2.0
    MAX_ATTEMPTS: int = 30
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "console"
    METRICS_FILE: str | None = None

    class Config:
        env_prefix = "KUBEROLL_"
        env_file = ".env"


settings = Settings()
