from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator

class Settings(BaseSettings):
    # Application Settings
    app_name: str = Field(default="Salon Queue API", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    ENVIRONMENT: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=True, alias="DEBUG")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Database Configuration
    DB_HOST: str = Field(default="localhost", alias="DB_HOST")
    DB_PORT: int = Field(default=5432, alias="DB_PORT")
    DB_NAME: str = Field(default="salon_queue", alias="DB_NAME")
    DB_USER: str = Field(default="salon_user", alias="DB_USER")
    DB_PASSWORD: str = Field(default="salon_password", alias="DB_PASSWORD")
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW")
    db_pool_timeout: int = Field(default=20, alias="DB_POOL_TIMEOUT")
    db_statement_timeout_ms: int = Field(default=5000, alias="DB_STATEMENT_TIMEOUT_MS")

    # JWT validation (tokens are issued by the identity provider)
    JWT_SECRET: str = Field(default="your-super-secret-jwt-key-change-this-in-production", alias="JWT_SECRET")
    JWT_ALGORITHM: str = Field(default="HS256", alias="JWT_ALGORITHM")

    # Scheduling
    business_timezone: str = Field(default="Asia/Kolkata", alias="BUSINESS_TIMEZONE")
    closing_buffer_minutes: int = Field(default=10, alias="CLOSING_BUFFER_MINUTES")
    delay_alert_threshold_minutes: int = Field(default=10, alias="DELAY_ALERT_THRESHOLD_MINUTES")
    notify_top_n: int = Field(default=3, alias="NOTIFY_TOP_N")
    default_open_time: str = Field(default="09:00", alias="DEFAULT_OPEN_TIME")
    default_close_time: str = Field(default="21:00", alias="DEFAULT_CLOSE_TIME")

    # CORS Configuration
    API_CORS_ORIGINS: Optional[str] = Field(default=None, alias="API_CORS_ORIGINS")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s", alias="LOG_FORMAT")

    # Twilio Configuration
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_whatsapp_number: str = Field(default="whatsapp:+14155238886", alias="TWILIO_WHATSAPP_NUMBER")
    twilio_phone_number: Optional[str] = Field(default=None, alias="TWILIO_PHONE_NUMBER")
    twilio_messaging_service_sid: Optional[str] = Field(default=None, alias="TWILIO_MESSAGING_SERVICE_SID")
    twilio_enabled: bool = Field(default=False, alias="TWILIO_ENABLED")
    notification_channel: str = Field(default="whatsapp", alias="NOTIFICATION_CHANNEL")
    notification_timeout_seconds: int = Field(default=10, alias="NOTIFICATION_TIMEOUT_SECONDS")
    default_country_code: str = Field(default="91", alias="DEFAULT_COUNTRY_CODE")

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS")
    rate_limit_window: int = Field(default=60, alias="RATE_LIMIT_WINDOW")

    @field_validator('notification_channel')
    @classmethod
    def validate_channel(cls, v):
        channel = v.strip().lower()
        if channel not in ("sms", "whatsapp"):
            raise ValueError("NOTIFICATION_CHANNEL must be 'sms' or 'whatsapp'")
        return channel

    @property
    def DATABASE_URL(self) -> str:
        if self.database_url.startswith(("postgresql://", "postgresql+psycopg2://", "sqlite")):
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def database_echo(self) -> bool:
        return self.debug and self.is_development and self.LOG_LEVEL.upper() == "DEBUG"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

# Global settings instance
settings = Settings()
