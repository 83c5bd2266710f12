# Файл: src/billing_backoffice/config.py

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# --- 1. Настройки PostgreSQL ---
class PostgresConfig(BaseModel):
    user: str = "postgres"
    password: str = "postgres"
    host: str = "localhost"
    port: int = 5432
    db: str = "billing"

    pool_size: int = 5
    max_overflow: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    application_name: str = "billing_backoffice"
    # Полный DSN перекрывает поля выше (POSTGRES_DSN), например sqlite+aiosqlite:/// для локальных прогонов.
    dsn: Optional[str] = None

    def get_pg_dsn(self) -> str:
        """Собирает DSN для SQLAlchemy из полей этого объекта."""
        if self.dsn:
            return self.dsn
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


# --- 2. Бизнес-параметры биллинга ---
class BillingConfig(BaseModel):
    money_ceiling: Decimal = Decimal("1000000")
    dashboard_cache_ttl: float = 300.0
    max_retries: int = 3
    retry_base_delay: float = 0.1
    reminder_days: int = 3
    default_due_day: int = Field(10, ge=1, le=28)


# --- 3. Расписание фоновых задач (время в UTC, "HH:MM") ---
class SchedulerConfig(BaseModel):
    enabled: bool = True
    aging_at: str = Field("00:00", pattern=r"^\d{2}:\d{2}$")
    reminder_at: str = Field("08:00", pattern=r"^\d{2}:\d{2}$")
    prune_at: str = Field("03:00", pattern=r"^\d{2}:\d{2}$")


class AuthConfig(BaseModel):
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60


# --- 4. Явная конфигурация клиента ---
class BillingClientConfig(BaseModel):
    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)


# --- 5. Settings читает всё из .env / окружения ---
class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter='_',
        env_nested_max_split=1,
        extra='ignore'
    )

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)


_cached_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Возвращает синглтон-экземпляр настроек, создавая его при первом вызове.
    Так ошибки валидации не всплывают при импорте модуля.
    """
    global _cached_settings
    if _cached_settings is None:
        _cached_settings = Settings()
    return _cached_settings
