import os


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return float(raw)
    except Exception:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"true", "1", "yes"}


FLOW_API_BASE_URL = str(os.getenv("FLOW_API_BASE_URL", "http://127.0.0.1:8080")).strip()
FLOW_API_PREFIX = str(os.getenv("FLOW_API_PREFIX", "/nifi-api")).strip()
AUTH_PATH = str(os.getenv("FLOW_AUTH_PATH", "/api/authenticate")).strip()
REQUEST_TIMEOUT_SECONDS = _float_env("FLOW_REQUEST_TIMEOUT_SECONDS", 30.0)
VERIFY_TLS = _bool_env("FLOW_VERIFY_TLS", True)

ROOT_ID_CACHE_TTL_SECONDS = _float_env("FLOW_ROOT_ID_CACHE_TTL_SECONDS", 300.0)
ROOT_AUTH_MAX_RETRIES = _int_env("FLOW_ROOT_AUTH_MAX_RETRIES", 2)

# "uuid" -> uuid4().hex, "token" -> 32-char alphanumeric token
CLIENT_ID_MODE = str(os.getenv("FLOW_CLIENT_ID_MODE", "uuid")).strip().lower()
CLIENT_ID_LENGTH = 32

DEFAULT_PROCESS_GROUP_ID = str(os.getenv("FLOW_DEFAULT_PROCESS_GROUP_ID", "")).strip()

VERIFICATION_POLL_SECONDS = _float_env("FLOW_VERIFICATION_POLL_SECONDS", 1.0)
VERIFICATION_MAX_POLLS = _int_env("FLOW_VERIFICATION_MAX_POLLS", 30)

CONSOLE_PORT = _int_env("FLOW_CONSOLE_PORT", 5000)
CONSOLE_BIND_HOST = str(os.getenv("FLOW_CONSOLE_BIND_HOST", "0.0.0.0")).strip()
CONSOLE_DEBUG = _bool_env("FLOW_CONSOLE_DEBUG", False)
SESSION_REFRESH_SECONDS = _int_env("FLOW_SESSION_REFRESH_SECONDS", 30)

DEFAULT_POSITION = {"x": 3264.911834716797, "y": 92.27570343017578}

DEFAULT_PERMISSIONS = {
    "ADMIN": {"can_read": True, "can_write": True, "can_delete": True},
    "USER": {"can_read": True, "can_write": True, "can_delete": False},
    "READONLY": {"can_read": True, "can_write": False, "can_delete": False},
}
