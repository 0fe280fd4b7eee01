"""Application configuration settings."""
import os
from pathlib import Path
from typing import ClassVar

# Constants for validation
MAX_LLM_TIMEOUT = 300
MAX_LLM_ATTEMPTS = 5
MIN_PORT = 1
MAX_PORT = 65535
HTTP_PREFIXES = ("http://", "https://")
PERSISTENCE_BACKENDS = ("memory", "supabase")
PROGRESS_MODES = ("milestones", "simulated")


class Config:
    """Application configuration settings."""

    # Application settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))

    # OpenAI chat completion settings
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY") or None
    OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    LLM_TIMEOUT: int = int(os.getenv("LLM_TIMEOUT", "60"))
    LLM_MAX_ATTEMPTS: int = int(os.getenv("LLM_MAX_ATTEMPTS", "1"))

    # Persistence settings
    PERSISTENCE_BACKEND: str = os.getenv("PERSISTENCE_BACKEND", "memory").lower()
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL") or None
    SUPABASE_ANON_KEY: str | None = os.getenv("SUPABASE_ANON_KEY") or None

    # Progress reporting
    PROGRESS_MODE: str = os.getenv("PROGRESS_MODE", "milestones").lower()

    # Finished outcomes and progress boards kept in memory per process
    RESULT_CACHE_SIZE: int = int(os.getenv("RESULT_CACHE_SIZE", "1000"))

    # MLflow tracking, disabled unless a tracking URI is given
    MLFLOW_TRACKING_URI: str | None = os.getenv("MLFLOW_TRACKING_URI") or None
    MLFLOW_EXPERIMENT: str = os.getenv("MLFLOW_EXPERIMENT", "InnovationAgent")

    # Fallback solution catalogue
    FALLBACK_CATALOG: Path = Path(
        os.getenv(
            "FALLBACK_CATALOG",
            str(Path(__file__).parent / "fallback_solutions.toml"),
        ),
    ).resolve()

    # Security settings
    ALLOWED_ORIGINS: ClassVar[list[str]] = [
        origin.strip()
        for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    @classmethod
    def _raise_value_error(cls, message: str) -> None:
        """Raise a ValueError with the given message."""
        raise ValueError(message)

    @classmethod
    def validate_config(cls) -> None:
        """Validate configuration values."""
        try:
            if not cls.FALLBACK_CATALOG.is_file():
                error_message = f"Fallback catalogue not found: {cls.FALLBACK_CATALOG}"
                cls._raise_value_error(error_message)

            # Validate numerical values
            if not (1 <= cls.LLM_TIMEOUT <= MAX_LLM_TIMEOUT):
                error_message = f"LLM_TIMEOUT must be between 1 and {MAX_LLM_TIMEOUT} seconds"
                cls._raise_value_error(error_message)

            if not (1 <= cls.LLM_MAX_ATTEMPTS <= MAX_LLM_ATTEMPTS):
                error_message = f"LLM_MAX_ATTEMPTS must be between 1 and {MAX_LLM_ATTEMPTS}"
                cls._raise_value_error(error_message)

            # Validate network settings
            if not cls.HOST:
                cls._raise_value_error("HOST cannot be empty")

            if not (MIN_PORT <= cls.PORT <= MAX_PORT):
                error_message = (
                    f"PORT must be between {MIN_PORT} and {MAX_PORT}"
                )
                cls._raise_value_error(error_message)

            # Validate LLM settings
            if not any(cls.OPENAI_BASE_URL.startswith(prefix) for prefix in HTTP_PREFIXES):
                error_message = "OPENAI_BASE_URL must start with http:// or https://"
                cls._raise_value_error(error_message)

            # Validate persistence settings
            if cls.PERSISTENCE_BACKEND not in PERSISTENCE_BACKENDS:
                error_message = (
                    f"PERSISTENCE_BACKEND must be one of {', '.join(PERSISTENCE_BACKENDS)}"
                )
                cls._raise_value_error(error_message)

            if cls.PERSISTENCE_BACKEND == "supabase":
                if not cls.SUPABASE_URL or not cls.SUPABASE_ANON_KEY:
                    cls._raise_value_error(
                        "SUPABASE_URL and SUPABASE_ANON_KEY are required for the supabase backend",
                    )
                if not any(cls.SUPABASE_URL.startswith(prefix) for prefix in HTTP_PREFIXES):
                    cls._raise_value_error("SUPABASE_URL must start with http:// or https://")

            if cls.PROGRESS_MODE not in PROGRESS_MODES:
                error_message = f"PROGRESS_MODE must be one of {', '.join(PROGRESS_MODES)}"
                cls._raise_value_error(error_message)

            if cls.RESULT_CACHE_SIZE < 1:
                cls._raise_value_error("RESULT_CACHE_SIZE must be at least 1")

        except ValueError:
            if cls.DEBUG:
                import traceback
                traceback.print_exc()
            raise

# Validate configuration on import
Config.validate_config()
