"""
bargen Configuration

Environment-based configuration for the generation client.
"""
import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _app_version_from_package() -> str:
    """Read version from installed package metadata."""
    try:
        from importlib.metadata import version
        return version("bargen")
    except Exception:
        pass
    return "0.0.0-unknown"


# Instruments the backend accepts as an ``inst`` tag.
INSTRUMENTS: tuple[str, ...] = ("piano", "guitar", "bass")

# Interpolation weights requested for a mix-sweep job when the caller gives none.
DEFAULT_MIX_ALPHAS: tuple[float, ...] = (0.0, 0.25, 0.5, 0.75, 1.0)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "bargen"
    app_version: str = _app_version_from_package()
    debug: bool = False

    # Generation backend
    api_base_url: str = "http://localhost:8000/"
    api_timeout: float = 60.0  # seconds; also applies to artifact downloads

    # Polling (milliseconds)
    poll_initial_delay_ms: int = 200
    poll_jitter_min_ms: int = 700
    poll_jitter_max_ms: int = 1300

    # Request defaults
    default_instrument: str = "piano"
    default_n_midi: int = 5
    default_bpm: float = 120.0
    chord_beats_per_bar: int = 4

    @model_validator(mode="after")
    def _check_jitter_window(self) -> "Settings":
        """Reject an inverted jitter window; warn on a degenerate one."""
        if self.poll_jitter_max_ms < self.poll_jitter_min_ms:
            raise ValueError(
                f"poll_jitter_max_ms ({self.poll_jitter_max_ms}) must be >= "
                f"poll_jitter_min_ms ({self.poll_jitter_min_ms})"
            )
        if self.poll_jitter_max_ms == self.poll_jitter_min_ms:
            logging.getLogger(__name__).warning(
                "Poll jitter window is empty; concurrent tasks will poll in lockstep."
            )
        return self

    model_config = SettingsConfigDict(
        env_prefix="BARGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
