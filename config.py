import os
from typing import Any, Dict

import yaml

ROOT_DIR = os.path.dirname(__file__)


def _load_dotenv(path: str, existing_env: set[str], allow_override: bool = False) -> None:
    if not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.startswith("export "):
                    line = line[7:].strip()
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                if not key:
                    continue
                current_value = str(os.environ.get(key, "") or "").strip()
                # Do not treat empty pre-existing env vars as authoritative.
                if key in existing_env and current_value:
                    continue
                if key in os.environ and (not allow_override) and current_value:
                    continue
                value = value.strip()
                if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
                    value = value[1:-1]
                os.environ[key] = value
    except OSError:
        return


_EXISTING_ENV = set(os.environ.keys())
_load_dotenv(os.path.join(ROOT_DIR, ".env"), _EXISTING_ENV, allow_override=False)
_load_dotenv(os.path.join(ROOT_DIR, ".env.local"), _EXISTING_ENV, allow_override=True)

APP_ENV = os.getenv("APP_ENV", "dev")
CONFIG_PATH = os.getenv("CONFIG_PATH", os.path.join(ROOT_DIR, "config.yaml"))

_ENV_ONLY_KEYS = {
    "AUTH_TOKEN_SECRET",
    "RAZORPAY_KEY_SECRET",
    "RAZORPAY_WEBHOOK_SECRET",
}


def _load_config(path: str, env: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw_data: Any = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError):
        return {}
    data = raw_data or {}
    if isinstance(data, dict) and env in data and isinstance(data[env], dict):
        return dict(data[env])
    if isinstance(data, dict):
        return dict(data)
    return {}


_CONFIG = _load_config(CONFIG_PATH, APP_ENV)


def _get(name: str, default: Any) -> Any:
    if name in os.environ:
        return os.environ[name]
    if name in _ENV_ONLY_KEYS:
        return default
    if isinstance(_CONFIG, dict):
        if name in _CONFIG:
            return _CONFIG[name]
        lower = name.lower()
        if lower in _CONFIG:
            return _CONFIG[lower]
    return default


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes"}


_root_path = str(_get("ROOT_PATH", "")).strip()
if _root_path and not _root_path.startswith("/"):
    _root_path = f"/{_root_path}"
ROOT_PATH = _root_path.rstrip("/") if _root_path else ""
APP_VERSION = str(_get("APP_VERSION", "0.1.0"))
API_HOST = _get("API_HOST", "127.0.0.1")
API_PORT = int(_get("API_PORT", "8010"))

DATABASE_URL = str(
    _get(
        "DATABASE_URL",
        f"sqlite:///{os.path.join(ROOT_DIR, '.premium', 'premium.db')}",
    )
).strip()
DATABASE_ECHO = _parse_bool(_get("DATABASE_ECHO", "false"), False)
STARTUP_BOOTSTRAP_ENABLED = _parse_bool(_get("STARTUP_BOOTSTRAP_ENABLED", "true"), True)
SEED_DEFAULT_PLANS = _parse_bool(_get("SEED_DEFAULT_PLANS", "true"), True)

AUTH_TOKEN_SECRET = str(_get("AUTH_TOKEN_SECRET", "")).strip()

REDIS_URL = _get("REDIS_URL", "redis://localhost:6379/0")
REDIS_DISABLED = _parse_bool(_get("REDIS_DISABLED", "false"), False)

# Payment gateway (Razorpay-compatible).
PAYMENT_GATEWAY = str(_get("PAYMENT_GATEWAY", "razorpay")).strip().lower() or "razorpay"
PAYMENT_CURRENCY = str(_get("PAYMENT_CURRENCY", "INR")).strip().upper() or "INR"
RAZORPAY_KEY_ID = str(_get("RAZORPAY_KEY_ID", "")).strip()
RAZORPAY_KEY_SECRET = str(_get("RAZORPAY_KEY_SECRET", "")).strip()
RAZORPAY_WEBHOOK_SECRET = str(_get("RAZORPAY_WEBHOOK_SECRET", "")).strip()
RAZORPAY_API_BASE_URL = str(_get("RAZORPAY_API_BASE_URL", "https://api.razorpay.com")).strip().rstrip("/")
RAZORPAY_TIMEOUT_SECONDS = float(_get("RAZORPAY_TIMEOUT_SECONDS", "20"))

PAYMENT_RATE_LIMIT_RPM = int(_get("PAYMENT_RATE_LIMIT_RPM", "10"))
PENDING_PAYMENT_TIMEOUT_SECONDS = int(_get("PENDING_PAYMENT_TIMEOUT_SECONDS", "86400"))

CORS_ORIGINS = [
    origin.strip()
    for origin in str(
        _get(
            "CORS_ORIGINS",
            "http://127.0.0.1:5173,http://localhost:5173",
        )
    ).split(",")
    if origin.strip()
]
