from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./metamirror.db"
    redis_url: str = "redis://localhost:6379/0"

    output_dir: str = "./mirror-output"

    database_worker_count: int = 4
    metadata_worker_count: int = 10
    transfer_worker_count: int = 8

    log_level: str = "INFO"

settings = Settings()
