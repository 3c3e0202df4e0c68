from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "SWITCHBOARD_", "env_file": ".env", "extra": "ignore"}

    # Listener
    host: str = "0.0.0.0"
    port: int = 3055

    log_level: str = "info"

    # Outbound frames buffered per connection before new ones are dropped
    send_queue_size: int = 1024

    # Browser clients (e.g. design-tool plugins) connect cross-origin
    cors_allow_origins: list[str] = ["*"]


settings = Settings()
