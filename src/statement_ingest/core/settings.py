import os
import re
import shlex

from dotenv import find_dotenv, load_dotenv

from statement_ingest.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "LEDGER_URL",
    "LEDGER_TOKEN",
    "CATALOG_CACHE_TTL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "DUPLICATE_REVIEW_MODEL",
    "DUPLICATE_CONTEXT_SIZE",
    "MAX_UPLOAD_MB",
)

_CONFIG_LINE = re.compile(r"^\s*(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*:(?P<value>.*)$")


def _config_candidates() -> list[str]:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return [os.path.join(config_dir, CONFIG_FILENAME)]
    cwd = os.getcwd()
    return [os.path.join(cwd, "config", CONFIG_FILENAME), os.path.join(cwd, CONFIG_FILENAME)]


def _resolve_config_path() -> str:
    candidates = _config_candidates()
    return next((path for path in candidates if os.path.exists(path)), candidates[-1])


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir and os.path.exists(os.path.join(config_dir, ".env")):
        return os.path.join(config_dir, ".env")
    return find_dotenv(usecwd=True) or None


def _parse_config_value(raw_value: str) -> str:
    # shlex drops unquoted "#" comments and unwraps quoted values.
    return " ".join(shlex.split(raw_value, comments=True))


def read_config_file(path: str | None) -> dict[str, str]:
    """Read a flat ``KEY: value`` file. Nested YAML is not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            match = _CONFIG_LINE.match(line)
            if match is None:
                continue
            try:
                value = _parse_config_value(match.group("value"))
            except ValueError as exc:
                logger.warning("[ENV] Skipping %s line %d: %s", path, line_number, exc)
                continue
            if value:
                values[match.group("key")] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    for key in _CONFIG_KEYS:
        if key in _CONFIG_FILE_VALUES:
            os.environ.setdefault(key, _CONFIG_FILE_VALUES[key])


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s=%s is below %s, using default %s.", name, value, min_value, default)
        return default
    return value


def get_env_float(name: str, default: float = 0.0) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default


_SENSITIVE_NAME = re.compile(r"KEY|TOKEN|SECRET|PASS|AUTH|BEARER|PRIVATE", re.IGNORECASE)
# API keys, bearer headers and JWTs.
_SENSITIVE_VALUE = re.compile(r"^(?:sk-|rk-|[Bb]earer |eyJ[^.]*\.[^.]*\.[^.]*$)")


def _mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not (_SENSITIVE_NAME.search(name) or _SENSITIVE_VALUE.match(sanitized)):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Config file: %s", get_config_path() or "<none>")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        logger.info("[ENV] %s=%s", key, "<unset>" if raw_value is None else _mask_env_value(key, raw_value))


DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_DUPLICATE_CONTEXT_SIZE = 20
DEFAULT_MAX_UPLOAD_MB = 20
DEFAULT_CATALOG_CACHE_TTL_SECONDS = 60.0

# Disable proxy buffering so NDJSON chunks reach the client as they are produced.
STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)

OPENAI_MODEL = os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL
DUPLICATE_REVIEW_MODEL = os.getenv("DUPLICATE_REVIEW_MODEL") or OPENAI_MODEL

DUPLICATE_CONTEXT_SIZE = get_env_int(
    "DUPLICATE_CONTEXT_SIZE",
    DEFAULT_DUPLICATE_CONTEXT_SIZE,
    min_value=0,
)

MAX_UPLOAD_BYTES = get_env_int(
    "MAX_UPLOAD_MB",
    DEFAULT_MAX_UPLOAD_MB,
    min_value=1,
) * 1024 * 1024

CATALOG_CACHE_TTL = max(
    0.0,
    get_env_float("CATALOG_CACHE_TTL", DEFAULT_CATALOG_CACHE_TTL_SECONDS),
)
