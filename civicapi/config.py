from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    ENV_STATE: Optional[str] = None

    """Loads the dotenv file."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class GlobalConfig(BaseConfig):
    DATABASE_URL: str = "sqlite:///civic.db"
    DB_FORCE_ROLL_BACK: bool = False
    LOG_LEVEL: str = "INFO"
    SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    # tokens come from the identity service; shown in the OpenAPI login form only
    AUTH_TOKEN_URL: str = "http://localhost:8001/api/auth/token"
    ADMIN_ROLE_NAMES: List[str] = ["Super Administrator", "Administrator"]
    CORS_ORIGINS: List[str] = ["http://localhost", "http://localhost:5173"]
    MAX_FILES_PER_FIELD: int = 5
    # MinIO Config
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ROOT_USER: Optional[str] = None
    MINIO_ROOT_PASSWORD: Optional[str] = None
    MINIO_BUCKET: str = "civic-submissions"
    MINIO_SECURE: bool = False


class DevConfig(GlobalConfig):
    model_config = SettingsConfigDict(env_prefix="DEV_")


class ProdConfig(GlobalConfig):
    model_config = SettingsConfigDict(env_prefix="PROD_")


class TestConfig(GlobalConfig):
    DATABASE_URL: str = "sqlite:///test.db"
    DB_FORCE_ROLL_BACK: bool = True
    SECRET_KEY: str = "test-secret-key"
    LOG_LEVEL: str = "DEBUG"
    model_config = SettingsConfigDict(env_prefix="TEST_")


@lru_cache()
def get_config(env_state: str):
    """Instantiate config based on the environment."""
    configs = {"dev": DevConfig, "prod": ProdConfig, "test": TestConfig}
    return configs[env_state]()


config = get_config(BaseConfig().ENV_STATE or "dev")
