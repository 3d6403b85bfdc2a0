from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    APP_NAME: str = "Courier Quotes"

    # Empty means the in-process store is used
    QUOTE_STORE_URL: str = ""
    CUSTOMER_DIRECTORY_URL: str = "http://localhost:8081"
    SHIPMENT_SERVICE_URL: str = "http://localhost:8082"
    NOTIFICATION_URL: str = "http://localhost:8083/emails"
    SERVICE_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: float = 10.0

    QUOTE_NUMBER_PREFIX: str = "QT"
    EXPIRING_SOON_DAYS: int = 3
    FOLLOW_UP_AFTER_DAYS: int = 3
    HIGH_CONVERSION_MAX_AGE_DAYS: int = 2
    LOW_CONVERSION_MIN_AGE_DAYS: int = 7
    COMPETITIVE_PRICE_THRESHOLD: float = 5000.0
    MAX_SELECTED_PARTNER_QUOTES: int = 2

    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
