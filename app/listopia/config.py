import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    openai_api_key: str
    llm_model: str
    llm_max_retries: int
    llm_timeout_seconds: float

    invitation_ttl_days: int
    chat_history_limit: int
    search_result_limit: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///listopia.db"),
        openai_api_key=_getenv("OPENAI_API_KEY", ""),
        llm_model=_getenv("LLM_MODEL", "gpt-4o-mini"),
        llm_max_retries=_getenv_int("LLM_MAX_RETRIES", 3),
        llm_timeout_seconds=float(_getenv_int("LLM_TIMEOUT_SECONDS", 30)),
        invitation_ttl_days=_getenv_int("INVITATION_TTL_DAYS", 7),
        chat_history_limit=_getenv_int("CHAT_HISTORY_LIMIT", 50),
        search_result_limit=_getenv_int("SEARCH_RESULT_LIMIT", 20),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "OPENAI_API_KEY": s.openai_api_key,
        "LLM_MODEL": s.llm_model,
        "LLM_MAX_RETRIES": s.llm_max_retries,
        "LLM_TIMEOUT_SECONDS": s.llm_timeout_seconds,
        "INVITATION_TTL_DAYS": s.invitation_ttl_days,
        "CHAT_HISTORY_LIMIT": s.chat_history_limit,
        "SEARCH_RESULT_LIMIT": s.search_result_limit,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
