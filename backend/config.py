"""Centralized configuration — all env vars in one place."""

import os

EXTRACTOR_KINDS = {"browser", "redirect"}


def _env_int(name: str, default: int, problems: list[str]) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        problems.append(f"{name} must be an integer, got {raw!r}; using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        self._env_problems: list[str] = []
        self.cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
        self.git_sha: str = os.getenv("GIT_SHA", "unknown")
        self.environment: str = os.getenv("ENVIRONMENT", "local")
        self.port: int = _env_int("PORT", 8080, self._env_problems)

        # Token cache
        self.token_ttl_ms: int = _env_int("TOKEN_TTL_MS", 120_000, self._env_problems)
        self.cache_max_entries: int = _env_int("CACHE_MAX_ENTRIES", 1000, self._env_problems)
        self.cache_sweep_interval_seconds: int = _env_int("CACHE_SWEEP_INTERVAL_SECONDS", 60, self._env_problems)

        # Extraction cycle
        self.extractor: str = os.getenv("EXTRACTOR", "browser").strip().lower()
        self.extract_timeout_ms: int = _env_int("EXTRACT_TIMEOUT_MS", 15_000, self._env_problems)
        self.extract_max_attempts: int = _env_int("EXTRACT_MAX_ATTEMPTS", 3, self._env_problems)
        self.extract_retry_delay_ms: int = _env_int("EXTRACT_RETRY_DELAY_MS", 1000, self._env_problems)
        self.batch_max_concurrency: int = _env_int("BATCH_MAX_CONCURRENCY", 4, self._env_problems)
        self.browser_headless: bool = _env_bool("BROWSER_HEADLESS", True)
        self.redirect_max_hops: int = _env_int("REDIRECT_MAX_HOPS", 10, self._env_problems)

        # Cross-request backoff
        self.backoff_step_ms: int = _env_int("BACKOFF_STEP_MS", 5000, self._env_problems)
        self.backoff_cap_ms: int = _env_int("BACKOFF_CAP_MS", 30_000, self._env_problems)
        self.enforce_backoff: bool = _env_bool("ENFORCE_BACKOFF", False)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate(self) -> list[str]:
        """Return list of configuration problems (empty when settings are usable)."""
        problems = list(self._env_problems)
        if self.extractor not in EXTRACTOR_KINDS:
            problems.append(f"EXTRACTOR must be one of {sorted(EXTRACTOR_KINDS)}, got {self.extractor!r}")
        if self.token_ttl_ms <= 0:
            problems.append("TOKEN_TTL_MS must be positive")
        if self.cache_max_entries <= 0:
            problems.append("CACHE_MAX_ENTRIES must be positive")
        if self.extract_max_attempts < 1:
            problems.append("EXTRACT_MAX_ATTEMPTS must be at least 1")
        if self.batch_max_concurrency < 1:
            problems.append("BATCH_MAX_CONCURRENCY must be at least 1")
        return problems


settings = Settings()
