from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_BASE_URL: str = "http://127.0.0.1:8080"
    DATABASE_URL: str = "sqlite:///./ledgersync.db"
    LOG_LEVEL: str = "INFO"

    PROVIDER_AUTH_ORIGIN: str = "https://auth.truelayer-sandbox.com"
    PROVIDER_API_ORIGIN: str = "https://api.truelayer-sandbox.com"
    PROVIDER_CLIENT_ID: str = "demo-client"
    PROVIDER_CLIENT_SECRET: str = "demo-secret"
    PROVIDER_REDIRECT_URI: str = "http://127.0.0.1:8080/redirect"
    PROVIDER_SCOPES: str = "info accounts balance cards transactions offline_access"
    PROVIDER_PROVIDERS: str = "uk-cs-mock uk-ob-all uk-oauth-all"
    # Serves the sandbox provider under /provider; point the origins at APP_BASE_URL/provider to use it.
    PROVIDER_MOCK_ENABLED: bool = False

    TOKEN_ENCRYPTION_SECRET: str = "dev-token-secret-change-me"
    TOKEN_ENCRYPTION_SALT: str = "dev-token-salt-change-me"
    TOKEN_EXPIRY_MARGIN_SECONDS: int = 30
    REFRESH_TOKEN_TTL_DAYS: int = 90
    OAUTH_STATE_TTL_MINUTES: int = 10

    SCHEDULER_ENABLED: bool = True
    SYNC_INTERVAL_MINUTES: int = 15
    BACKFILL_DAYS: int = 30
    BACKFILL_HOUR: int = 3

    KAFKA_BOOTSTRAP: str = "kafka:9092"
    KAFKA_TRANSACTIONS_TOPIC: str = "transactions"
    KAFKA_DEAD_LETTER_TOPIC: str = "transactions.dead-letter"
    KAFKA_GROUP_ID: str = "ledger-consumer"
    CONSUMER_MAX_ATTEMPTS: int = 5

    LEDGER_API_ORIGIN: str = "https://dev.lunchmoney.app"
    LEDGER_ACCESS_TOKEN: str = ""
    LEDGER_TIMEZONE: str = "Europe/London"
    PENDING_CATEGORY_NAME: str = "Pending"

    HTTP_TIMEOUT_SECONDS: int = 10

settings = Settings()
