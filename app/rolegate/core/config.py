from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "ROLEGATE"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    DATABASE_URL: str = "sqlite+pysqlite:///./rolegate.db"
    LOG_LEVEL: str = "INFO"
    DEFAULT_TENANT_NAME: str = "Default Tenant"
    SUPERADMIN_USERNAME: str = "superadmin"
    SUPERADMIN_EMAIL: str = "superadmin@example.com"
    CUSTOM_ROLE_BASELINE_ROLE: str = "MANAGER"
    CUSTOM_ROLE_MIN_LEVEL: int = 20
    ROLE_ADMIN_MAX_LEVEL: int = 20
    VISIBLE_ROLES_DEFAULT_PAGE_SIZE: int = 50
    VISIBLE_ROLES_MAX_PAGE_SIZE: int = 200


settings = Settings()
