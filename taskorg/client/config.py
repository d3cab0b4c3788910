from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    BASE_URL: str = "http://127.0.0.1:3000"
    STATE_DIR: str = "~/.taskorg"

    # Live channel
    RECONNECT_DELAY_SECONDS: float = 2.0
    REFRESH_INTERVAL_SECONDS: float = 60.0

    REQUEST_TIMEOUT_SECONDS: float = 10.0

    model_config = {"env_file": ".env", "env_prefix": "TASKORG_CLIENT_", "extra": "ignore"}
