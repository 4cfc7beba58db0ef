"""Centralized configuration for the conversational action agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/rag-actions/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/rag-actions/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /rag-actions/{name} (AWS)."
    )


def _optional_secret(name: str) -> str:
    """Like ``_require_env`` but returns ``""`` when the secret is absent."""
    try:
        return _require_env(name)
    except OSError:
        return ""


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Cheap model for tool selection; it only has to pick one tool and fill arguments
EXTRACTION_MODEL_NAME: str = os.getenv("EXTRACTION_MODEL_NAME", "claude-haiku-4-5")
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "3"))

# ── Embeddings / semantic store ─────────────────────────────────────
EMBEDDINGS_PROVIDER: str = os.getenv("EMBEDDINGS_PROVIDER", "openai").lower()
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
OPENAI_API_KEY: str = _optional_secret("OPENAI_API_KEY")
KNOWLEDGE_BASE_PATH: str = os.getenv("KNOWLEDGE_BASE_PATH", "KNOWLEDGE_BASE.md")

# ── Conversation pipeline ───────────────────────────────────────────
RETRIEVAL_LIMIT: int = int(os.getenv("RETRIEVAL_LIMIT", "3"))
MAX_HISTORY_LENGTH: int = int(os.getenv("MAX_HISTORY_LENGTH", "10"))
ACTION_TIMEOUT_SECONDS: float = float(os.getenv("ACTION_TIMEOUT_SECONDS", "30"))
PIPELINE_VARIANT: str = os.getenv("PIPELINE_VARIANT", "conditional")

# ── Storage ─────────────────────────────────────────────────────────
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "memory").lower()
AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
CONVERSATIONS_TABLE: str = os.getenv("CONVERSATIONS_TABLE", "conversation-states")
ACTIONS_TABLE: str = os.getenv("ACTIONS_TABLE", "action-queue")
CONVERSATION_TTL_DAYS: int = int(os.getenv("CONVERSATION_TTL_DAYS", "1"))

# ── Background action worker ────────────────────────────────────────
WORKER_ENABLED: bool = _env_flag("WORKER_ENABLED")
WORKER_BATCH_SIZE: int = int(os.getenv("WORKER_BATCH_SIZE", "10"))
WORKER_INTERVAL_SECONDS: float = float(os.getenv("WORKER_INTERVAL_SECONDS", "5"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
