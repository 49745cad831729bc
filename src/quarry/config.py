"""Configuration: frozen Config with an explicit default project."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import TYPE_CHECKING, Any

import dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from quarry.clock import SYSTEM_CLOCK, Clock
from quarry.errors import ConfigurationError, InvalidArgumentError
from quarry.retry import QUERY_WAIT_POLICY, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = "QUARRY_"
PROJECT_ENV_VAR = f"{ENV_PREFIX}PROJECT_ID"

_DOTENV_LOADED = False


def _load_dotenv() -> None:
    """Load a .env file from the working directory once, before reading the environment."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    dotenv.load_dotenv(dotenv.find_dotenv(usecwd=True))
    _DOTENV_LOADED = True


@dataclass(frozen=True)
class Config:
    """Immutable configuration shared by every call a client makes.

    ``project_id`` completes identities that do not name a project; it is
    auto-resolved from ``QUARRY_PROJECT_ID`` when not given.

    Example:
        config = Config(project_id="analytics")
        # Retries follow config.retry; query waits follow config.query_wait
    """

    project_id: str | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    query_wait: RetryPolicy = QUERY_WAIT_POLICY
    clock: Clock = SYSTEM_CLOCK
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Auto-resolve the project and validate configuration."""
        if self.project_id is None:
            _load_dotenv()
            object.__setattr__(self, "project_id", os.environ.get(PROJECT_ENV_VAR) or None)

        if not isinstance(self.project_id, str) or not self.project_id.strip():
            raise ConfigurationError(
                "project_id is required",
                hint=f"Set {PROJECT_ENV_VAR} or pass Config(project_id=...).",
            )
        object.__setattr__(self, "project_id", self.project_id.strip())

        for name in ("retry", "query_wait"):
            if not isinstance(getattr(self, name), RetryPolicy):
                raise ConfigurationError(
                    f"{name} must be a RetryPolicy, got {type(getattr(self, name)).__name__}",
                    hint="Pass RetryPolicy(max_attempts=..., ...).",
                )
        if not isinstance(self.clock, Clock):
            raise ConfigurationError(
                "clock must provide monotonic() and sleep()",
                hint="Use quarry.clock.SystemClock() or a test clock.",
            )

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> Config:
        """Build a Config from ``QUARRY_*`` environment variables.

        Recognized variables: ``QUARRY_PROJECT_ID``, ``QUARRY_USE_MOCK``,
        ``QUARRY_MAX_ATTEMPTS``, ``QUARRY_INITIAL_DELAY_S``,
        ``QUARRY_BACKOFF_MULTIPLIER``, ``QUARRY_MAX_DELAY_S``,
        ``QUARRY_MAX_ELAPSED_S``, ``QUARRY_JITTER``. Keyword overrides win.
        """
        if environ is None:
            _load_dotenv()
        env = os.environ if environ is None else environ
        raw = {
            key[len(ENV_PREFIX) :].lower(): value
            for key, value in env.items()
            if key.startswith(ENV_PREFIX)
        }
        try:
            settings = EnvSettings.model_validate(raw)
        except ValidationError as exc:
            first = exc.errors()[0]
            name = ENV_PREFIX + ".".join(str(p) for p in first["loc"]).upper()
            raise ConfigurationError(
                f"Invalid environment configuration: {name}: {first['msg']}",
                hint="Fix or unset the variable.",
            ) from exc

        try:
            retry = RetryPolicy(
                max_attempts=settings.max_attempts,
                initial_delay_s=settings.initial_delay_s,
                backoff_multiplier=settings.backoff_multiplier,
                max_delay_s=settings.max_delay_s,
                jitter=settings.jitter,
                max_elapsed_s=settings.max_elapsed_s,
            )
        except InvalidArgumentError as exc:
            raise ConfigurationError(str(exc), hint=exc.hint) from exc

        kwargs: dict[str, Any] = {
            "project_id": settings.project_id,
            "use_mock": settings.use_mock,
            "retry": retry,
        }
        kwargs.update(overrides)
        return cls(**kwargs)


class EnvSettings(BaseModel):
    """Schema for ``QUARRY_*`` environment variables."""

    project_id: str | None = None
    use_mock: bool = False
    max_attempts: int | None = Field(default=6, ge=1)
    initial_delay_s: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, gt=0)
    max_delay_s: float = Field(default=32.0, ge=0)
    max_elapsed_s: float | None = Field(default=50.0, ge=0)
    jitter: bool = True

    model_config = {"extra": "ignore"}

    @field_validator("project_id", mode="before")
    @classmethod
    def normalize_project_id(cls, v: Any) -> Any:
        """Trim whitespace; treat empty as unset."""
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("max_attempts", "max_elapsed_s", mode="before")
    @classmethod
    def normalize_unbounded(cls, v: Any) -> Any:
        """Accept ``none``/empty to lift a bound."""
        if isinstance(v, str) and v.strip().lower() in {"", "none"}:
            return None
        return v
