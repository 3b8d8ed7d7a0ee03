import dataclasses
import os

from .types import CALL_CLASSES, ClientConfig, RetryConfig

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Parse a simple .env file into a dict without modifying os.environ.

    Supports basic KEY=VALUE pairs, ignoring comments and blank lines.
    Surrounding single/double quotes are stripped if present.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                key, val = line.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key:
                    values[key] = val
    except FileNotFoundError:
        # Silently ignore missing file to make the helper easy to use
        pass
    return values


def _number(env_map: dict[str, str], var: str, cast=float):
    raw = env_map[var].strip()
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{var} must be a number, got {raw!r}") from None


def _split(raw: str) -> list[str]:
    return [t.strip() for t in raw.split(",") if t.strip()]


def load_config_from_env(
    prefix: str = "FERRY_",
    env_path: str | None = None,
    **overrides,
) -> ClientConfig:
    """Create a ClientConfig from environment variables.

    Recognized variables (shown with the default prefix):
    - FERRY_BASE_URL: backend base URL
    - FERRY_TIMEOUT / FERRY_UPLOAD_TIMEOUT: per-attempt deadlines in seconds
    - FERRY_MAX_RETRIES: automatic retries beyond the first attempt
    - FERRY_BACKOFF: comma-separated backoff schedule in seconds, e.g. "1,3,5"
    - FERRY_RATE_LIMIT_DELAY: wait for a 429 without a Retry-After hint
    - FERRY_SERIALIZE: "true"/"false", or a comma-separated list of call classes

    If 'env_path' is provided, variables from the .env file augment lookups
    (without mutating the process environment). Values in the actual environment
    take precedence over the file. Keyword overrides win over both.
    """
    # Build a lookup map: actual environment takes precedence over .env file
    file_env = _parse_env_file(env_path) if env_path else {}
    env_map: dict[str, str] = {**file_env, **os.environ}

    def has(name):
        return f"{prefix}{name}" in env_map

    top: dict = {}
    retry: dict = {}
    if has("BASE_URL") and env_map[f"{prefix}BASE_URL"].strip():
        top["base_url"] = env_map[f"{prefix}BASE_URL"].strip()
    if has("TIMEOUT"):
        top["timeout"] = _number(env_map, f"{prefix}TIMEOUT")
    if has("UPLOAD_TIMEOUT"):
        top["upload_timeout"] = _number(env_map, f"{prefix}UPLOAD_TIMEOUT")
    if has("MAX_RETRIES"):
        retry["max_attempts"] = _number(env_map, f"{prefix}MAX_RETRIES", int)
    if has("BACKOFF"):
        var = f"{prefix}BACKOFF"
        parts = _split(env_map[var])
        try:
            retry["backoff_schedule"] = tuple(float(p) for p in parts)
        except ValueError:
            msg = f"{var} must be comma-separated numbers, got {env_map[var]!r}"
            raise ValueError(msg) from None
    if has("RATE_LIMIT_DELAY"):
        retry["rate_limit_delay"] = _number(env_map, f"{prefix}RATE_LIMIT_DELAY")
    if has("SERIALIZE"):
        raw = env_map[f"{prefix}SERIALIZE"].strip().lower()
        if raw in _TRUE:
            top["serialize"] = True
        elif raw in _FALSE:
            top["serialize"] = False
        else:
            calls = frozenset(_split(raw))
            unknown = calls - CALL_CLASSES
            if unknown:
                raise ValueError(f"{prefix}SERIALIZE names unknown call classes: {sorted(unknown)}")
            top["serialize_calls"] = calls

    config = ClientConfig(**top, retry=RetryConfig(**retry))
    return apply_overrides(config, **overrides)


_RETRY_FIELDS = {f.name for f in dataclasses.fields(RetryConfig)}
_CONFIG_FIELDS = {f.name for f in dataclasses.fields(ClientConfig)}


def apply_overrides(config: ClientConfig, **overrides) -> ClientConfig:
    """Return config with keyword overrides applied; RetryConfig fields are accepted flat."""
    retry_kw = {k: overrides.pop(k) for k in list(overrides) if k in _RETRY_FIELDS}
    unknown = set(overrides) - _CONFIG_FIELDS
    if unknown:
        raise TypeError(f"Unknown configuration keywords: {sorted(unknown)}")
    if retry_kw:
        overrides["retry"] = dataclasses.replace(overrides.get("retry", config.retry), **retry_kw)
    if not overrides:
        return config
    return dataclasses.replace(config, **overrides)
