"""Global configuration - loads all settings from .env with API Key masking."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Bootstrap: load .env from project root
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent
load_dotenv(_PROJECT_ROOT / ".env")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mask_key(raw: str | None) -> str:
    """Mask a secret for safe logging: sk-abc...xyz → sk-****xyz"""
    if not raw:
        return "<unset>"
    if len(raw) <= 8:
        return "****"
    return f"{raw[:3]}****{raw[-4:]}"


def _require_env(name: str) -> str:
    """Return env var or raise with a helpful message."""
    val = os.getenv(name)
    if not val:
        raise EnvironmentError(
            f"Missing required environment variable: {name}. "
            f"Copy .env.example → .env and fill in the values."
        )
    return val


def _optional_env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _bool_env(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be a number, got {raw!r}") from exc


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Settings:
    """Immutable application settings loaded once from environment."""

    # LLM (OpenAI-compatible)
    llm_api_base: str
    llm_api_key: str
    llm_model: str
    llm_timeout: float
    llm_max_retries: int

    # Phabricator Conduit
    phabricator_host: str
    phabricator_token: str

    # Storage
    cache_dir: Path
    cache_ttl: int
    state_dir: Path

    # Review / publish
    max_concurrency: int = 5
    confidence_min: float = 0.7
    publish_confidence_min: float = 0.8
    similarity_threshold: float = 0.90
    allow_publish: bool = False

    # Test generation workers
    worker_enabled: bool = True
    worker_processes: int = 2
    analyze_timeout: float = 120.0
    generate_timeout: float = 300.0

    # Sources
    fetch_timeout: float = 30.0
    project_root: Path = field(default=Path.cwd())
    tool_version: str = field(default="fe-review-mcp@0.1.0")

    # --- safe logging ---------------------------------------------------
    @property
    def llm_api_key_masked(self) -> str:
        return _mask_key(self.llm_api_key)

    @property
    def phabricator_token_masked(self) -> str:
        return _mask_key(self.phabricator_token)

    def log_summary(self) -> str:
        return (
            f"Settings(\n"
            f"  llm_api_base={self.llm_api_base or '<openai default>'},\n"
            f"  llm_api_key={self.llm_api_key_masked},\n"
            f"  llm_model={self.llm_model},\n"
            f"  phabricator_host={self.phabricator_host},\n"
            f"  phabricator_token={self.phabricator_token_masked},\n"
            f"  cache_dir={self.cache_dir} (ttl={self.cache_ttl}s),\n"
            f"  state_dir={self.state_dir},\n"
            f"  confidence_min={self.confidence_min},\n"
            f"  publish_confidence_min={self.publish_confidence_min},\n"
            f"  allow_publish={self.allow_publish},\n"
            f"  worker_enabled={self.worker_enabled} (processes={self.worker_processes}),\n"
            f"  project_root={self.project_root},\n"
            f")"
        )


def load_settings() -> Settings:
    """Build a *Settings* instance from the current environment."""
    project_root = Path(_optional_env("PROJECT_ROOT", str(Path.cwd())))
    return Settings(
        llm_api_base=_optional_env("LLM_API_BASE"),
        llm_api_key=_require_env("LLM_API_KEY"),
        llm_model=_optional_env("LLM_MODEL", "gpt-4o-mini"),
        llm_timeout=_float_env("LLM_TIMEOUT", 60.0),
        llm_max_retries=_int_env("LLM_MAX_RETRIES", 2),
        phabricator_host=_require_env("PHABRICATOR_HOST"),
        phabricator_token=_require_env("PHABRICATOR_TOKEN"),
        cache_dir=Path(_optional_env("CACHE_DIR", str(project_root / ".cache"))),
        cache_ttl=_int_env("CACHE_TTL", 86400),
        state_dir=Path(_optional_env("STATE_DIR", str(project_root / ".state"))),
        max_concurrency=_int_env("MAX_CONCURRENCY", 5),
        confidence_min=_float_env("CONFIDENCE_MIN", 0.7),
        publish_confidence_min=_float_env("PUBLISH_CONFIDENCE_MIN", 0.8),
        similarity_threshold=_float_env("DEDUP_SIMILARITY_THRESHOLD", 0.90),
        allow_publish=_bool_env("ALLOW_PUBLISH_COMMENTS", False),
        worker_enabled=_bool_env("WORKER_ENABLED", True),
        worker_processes=_int_env("WORKER_PROCESSES", 2),
        analyze_timeout=_float_env("ANALYZE_TIMEOUT", 120.0),
        generate_timeout=_float_env("GENERATE_TIMEOUT", 300.0),
        fetch_timeout=_float_env("FETCH_TIMEOUT", 30.0),
        project_root=project_root,
    )
