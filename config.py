"""
Simulated Souls — Configuration

All settings come from the environment (a local .env file is loaded first).
Keys are resolved once into a plain dict by load_settings().
"""
import os
from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# DEFAULTS
# =============================================================================

GEMINI_MODEL = "gemini-2.0-flash"
GEMINI_FALLBACK_MODEL = "gemini-2.0-flash-lite"
RELAY_URL = "http://localhost:3001"

# Retry / backoff (seconds)
MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_DELAY = 8.0
BACKOFF_FACTOR = 2

# Circuit breaker
BREAKER_THRESHOLD = 5
BREAKER_RESET_TIMEOUT = 30.0


def _get_float(environ, name, default):
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _get_int(environ, name, default):
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_settings(environ=None):
    """Resolve settings from the environment.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        dict of settings. Credentials are None when unset; a blank
        GEMINI_FALLBACK_MODEL disables the fallback model.
    """
    env = os.environ if environ is None else environ

    fallback = env.get("GEMINI_FALLBACK_MODEL")
    if fallback is None:
        fallback = GEMINI_FALLBACK_MODEL
    fallback = fallback.strip() or None

    deadline = _get_float(env, "TURN_DEADLINE_SECONDS", None)

    return {
        "gemini_api_key": env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY") or env.get("API_KEY") or None,
        "gemini_model": env.get("GEMINI_MODEL", "").strip() or GEMINI_MODEL,
        "gemini_fallback_model": fallback,
        "image_api_key": env.get("CLOUDFLARE_API_KEY") or None,
        "relay_url": (env.get("IMAGE_RELAY_URL", "").strip() or RELAY_URL).rstrip("/"),
        "image_timeout": _get_float(env, "IMAGE_TIMEOUT_SECONDS", 120.0),
        "request_timeout_ms": _get_int(env, "GEMINI_REQUEST_TIMEOUT_MS", 60000),
        "turn_deadline": deadline,
        "max_retries": _get_int(env, "RETRY_MAX_RETRIES", MAX_RETRIES),
        "base_delay": _get_float(env, "RETRY_BASE_DELAY", BASE_DELAY),
        "max_delay": _get_float(env, "RETRY_MAX_DELAY", MAX_DELAY),
        "backoff_factor": _get_float(env, "RETRY_BACKOFF_FACTOR", BACKOFF_FACTOR),
        "breaker_threshold": _get_int(env, "BREAKER_THRESHOLD", BREAKER_THRESHOLD),
        "breaker_reset_timeout": _get_float(env, "BREAKER_RESET_TIMEOUT", BREAKER_RESET_TIMEOUT),
    }
