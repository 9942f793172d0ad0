# tasmota_admin/core/env_settings.py
from pydantic_settings import BaseSettings
from pydantic import ValidationError
from pathlib import Path

def get_env_path() -> Path:
    try:
        BASE_DIR = Path(__file__).resolve().parents[2]
        ENV_PATH = BASE_DIR / 'secrets' / 'app.env'
        if not ENV_PATH.exists():
            # Fallback to common Docker environment paths
            ENV_PATH = Path('/app/secrets/app.env')
            if not ENV_PATH.exists():
                ENV_PATH = Path('/app/app.env')

    except (NameError, ValueError, ValidationError):
        BASE_DIR = Path('/app')
        ENV_PATH = BASE_DIR / 'app.env'
    return ENV_PATH

class EnvSettings(BaseSettings):
    APP_NAME: str = 'Tasmota Admin'
    SECRET_KEY: str = 'your_secret_key'
    ALGORITHM: str = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    LOG_LEVEL: str = 'INFO'

    USER_USERNAME: str = 'user'
    HASHED_USER_PASSWORD: str = ""

    ADMIN_USERNAME: str = 'admin'
    HASHED_ADMIN_PASSWORD: str = ""

    # Storage
    DATABASE_URL: str = 'sqlite:///./tasmota_admin.db'

    # Redis settings (Celery broker and result backend)
    REDIS_URL: str = 'redis://redis:6379/0'

    # Tasmota devices
    TASMOTA_USERNAME: str = 'admin'
    TASMOTA_PASSWORD: str = ''
    DEVICE_TIMEOUT_MS: int = 5000
    TOGGLE_TIMEOUT_MS: int = 10000
    DISCOVERY_TIMEOUT_MS: int = 3000
    DISCOVERY_MAX_CONCURRENCY: int = 20
    DISCOVERY_MAX_ADDRESSES: int = 1000

    # Workflows
    WORKFLOW_STEP_PAUSE_SECONDS: float = 0.5
    WORKFLOW_ACTION_TIMEOUT_MS: int = 10000

    # Background polling
    DEVICE_POLL_INTERVAL_SECONDS: float = 60.0

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith('sqlite')

    class Config:
        env_file = str(get_env_path())
        env_file_encoding = 'utf-8'
        extra = 'ignore'

        # Allow environment variables to override values in the env file
        env_nested_delimiter = '__'

        validate_assignment = True

# Create a singleton instance
env = EnvSettings()
