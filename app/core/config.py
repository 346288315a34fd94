from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Providers
    gemini_model: str = "gemini-2.5-flash"
    perplexity_model: str = "sonar-pro"
    perplexity_api_url: str = "https://api.perplexity.ai"
    request_timeout: int = 120
    provider_max_retries: int = 1
    validation_max_tokens: int = 5

    # Credential persistence
    credential_store_path: str = ".credentials.json"
    credential_key: str = "apiKey"

    # Uploads and export
    max_file_size: int = 10485760  # 10MB
    export_filename: str = "product_attributes.csv"

    # Server
    log_level: str = "INFO"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
