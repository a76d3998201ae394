import os
import sys
from typing import Any, Dict, Mapping, Optional

import yaml

# ---------- Color-aware warning helper ----------
def _warn(msg: str):
    """Print a warning; colorized if DANGLEHAUNT_COLOR=1 and stderr is a TTY."""
    use_color = os.environ.get("DANGLEHAUNT_COLOR") == "1" and sys.stderr.isatty()
    if use_color:
        sys.stderr.write("\x1b[33m[WARNING]\x1b[0m " + msg + "\n")
    else:
        sys.stderr.write("[WARNING] " + msg + "\n")
    try:
        sys.stderr.flush()
    except (OSError, ValueError):
        pass
# ------------------------------------------------

def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "on")

# key -> (type, default)
SETTINGS: Dict[str, tuple] = {
    "csv": (str, None),
    "ndjson": (str, None),
    "threads": (int, 1),
    "http_timeout": (float, 6.0),
    "body_timeout": (float, 8.0),
    "dns_timeout": (float, 2.0),
    "s3_region": (str, "us-east-1"),
    "follow_chain": (_as_bool, False),
    "public_resolvers": (_as_bool, True),
    "http_hints": (_as_bool, False),
    "no_http_probe": (_as_bool, False),
    "no_bucket_probe": (_as_bool, False),
    "quiet": (_as_bool, False),
    "color": (_as_bool, False),
    "logfile": (str, None),
}

ENV_OVERRIDES: Dict[str, str] = {
    "http_timeout": "DANGLEHAUNT_HTTP_TIMEOUT",
    "body_timeout": "DANGLEHAUNT_BODY_TIMEOUT",
    "dns_timeout": "DNS_TIMEOUT",
    "s3_region": "DANGLEHAUNT_S3_REGION",
    "color": "DANGLEHAUNT_COLOR",
}


def _coerce(key: str, value: Any, origin: str) -> Any:
    kind, default = SETTINGS[key]
    if value is None:
        return None
    try:
        return kind(value)
    except (TypeError, ValueError):
        _warn(f"{origin}: bad value {value!r} for '{key}'; using default {default!r}.")
        return None


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """
    Optional YAML mapping of settings, e.g.

      csv: results.csv
      threads: 4
      http_timeout: 5
      follow_chain: true

    Unknown keys and unreadable files are warned about and ignored.
    """
    path = path or os.environ.get("DANGLEHAUNT_CONFIG")
    if not path:
        return {}
    if not os.path.isfile(path):
        _warn(f"Config file not found at {path}; using defaults.")
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        _warn(f"Failed to read config file {path}: {e}; using defaults.")
        return {}
    if not isinstance(data, dict):
        _warn(f"{path} is not a mapping; using defaults.")
        return {}

    out: Dict[str, Any] = {}
    for k, v in data.items():
        key = str(k).replace("-", "_")
        if key not in SETTINGS:
            _warn(f"{path}: unknown setting '{k}' ignored.")
            continue
        cv = _coerce(key, v, path)
        if cv is not None:
            out[key] = cv
    return out


def resolve_settings(cli: Mapping[str, Any], file_cfg: Mapping[str, Any],
                     environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Precedence: CLI flag > environment > config file > built-in default."""
    environ = os.environ if environ is None else environ
    out: Dict[str, Any] = {}
    for key, (_, default) in SETTINGS.items():
        value = cli.get(key)
        if value is None and key in ENV_OVERRIDES and environ.get(ENV_OVERRIDES[key]):
            value = _coerce(key, environ[ENV_OVERRIDES[key]], ENV_OVERRIDES[key])
        if value is None:
            value = file_cfg.get(key)
        if value is None:
            value = default
        out[key] = value
    return out
