import json
import os
from typing import Any, Dict, Optional

from .auth import ClientCredentials

CONFIG_PATH = "config.json"

# Default configuration values
DEFAULT_CONFIG = {
    "spotify_client_id": "",
    "spotify_client_secret": "",
    "spotify_redirect_uri": "http://127.0.0.1:8888/callback",
    "spotify_scopes": [
        "user-read-private",
        "user-library-read",
        "playlist-read-private",
        "playlist-read-collaborative",
    ],
    # "basic": client id/secret in an Authorization header; "body": in the form body.
    "spotify_client_auth": "basic",
    "spotify_token_margin_seconds": 60,
    "spotify_redirect_timeout": 300,
    "spotify_request_timeout": 30,
    "spotify_open_browser": True,
    "spotify_cache_tokens": False,
    "spotify_token_cache_path": os.path.join("data", "spotify_tokens.json"),
}

# Environment variables that override the matching config keys.
ENV_OVERRIDES = {
    "SPOTIFY_CLIENT_ID": "spotify_client_id",
    "SPOTIFY_CLIENT_SECRET": "spotify_client_secret",
    "SPOTIFY_REDIRECT_URI": "spotify_redirect_uri",
}

# Validation rules for config fields
CONFIG_SCHEMA = {
    "spotify_client_id": {"type": str, "required": True},
    "spotify_client_secret": {"type": str, "required": False},
    "spotify_redirect_uri": {"type": str, "required": True},
    "spotify_scopes": {"type": list, "required": False, "element_type": str},
    "spotify_client_auth": {"type": str, "required": False, "choices": ["basic", "body"]},
    "spotify_token_margin_seconds": {"type": (int, float), "required": False, "min": 0, "max": 600},
    "spotify_redirect_timeout": {"type": (int, float), "required": False, "min": 1, "max": 3600},
    "spotify_request_timeout": {"type": (int, float), "required": False, "min": 1, "max": 300},
    "spotify_open_browser": {"type": bool, "required": False},
    "spotify_cache_tokens": {"type": bool, "required": False},
    "spotify_token_cache_path": {"type": str, "required": False},
}


def apply_defaults(config: Optional[Dict[str, Any]] = None, *, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Return a copy of ``config`` with defaults filled in and env overrides applied."""

    merged = dict(config or {})
    for key, value in DEFAULT_CONFIG.items():
        if key not in merged:
            merged[key] = list(value) if isinstance(value, list) else value

    environ = os.environ if environ is None else environ
    for env_key, config_key in ENV_OVERRIDES.items():
        value = str(environ.get(env_key, "")).strip()
        if value:
            merged[config_key] = value

    return merged


def load_config(path: str = CONFIG_PATH, *, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Load configuration from file, applying defaults for missing fields.

    A missing file is not an error when the environment supplies credentials.
    """

    config: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            config = json.load(f)
        if not isinstance(config, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")

    return apply_defaults(config, environ=environ)


def save_config(config: Dict[str, Any], path: str = CONFIG_PATH) -> bool:
    """Save configuration to file."""
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        return True
    except OSError as e:
        raise IOError(f"Failed to save config: {e}") from e


def validate_config(config: Dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate configuration against schema.
    Returns (is_valid, list_of_errors).
    """
    errors = []

    for key, rules in CONFIG_SCHEMA.items():
        # Check required fields
        if rules.get("required", False) and not config.get(key):
            errors.append(f"Missing required field: {key}")
            continue

        if key not in config:
            continue

        value = config[key]

        # Type check (bool is an int subclass; don't let it pass numeric fields)
        expected_type = rules.get("type")
        if expected_type and (
            not isinstance(value, expected_type) or (isinstance(value, bool) and expected_type is not bool)
        ):
            type_names = expected_type.__name__ if not isinstance(expected_type, tuple) else "/".join(t.__name__ for t in expected_type)
            errors.append(f"Field '{key}' must be {type_names}, got {type(value).__name__}")
            continue

        # List element type check (when schema uses: {"type": list, "element_type": ...})
        if isinstance(value, list) and "element_type" in rules:
            elem_type = rules["element_type"]
            bad_elems = [v for v in value if not isinstance(v, elem_type)]
            if bad_elems:
                errors.append(
                    f"Field '{key}' must be a list of {elem_type.__name__}, got invalid elements: {bad_elems}"
                )
                continue

        # Choices check
        if "choices" in rules and value not in rules["choices"]:
            errors.append(f"Field '{key}' must be one of {rules['choices']}, got '{value}'")

        # Range check for numeric values
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if "min" in rules and value < rules["min"]:
                errors.append(f"Field '{key}' must be >= {rules['min']}, got {value}")
            if "max" in rules and value > rules["max"]:
                errors.append(f"Field '{key}' must be <= {rules['max']}, got {value}")

    redirect_uri = config.get("spotify_redirect_uri")
    if isinstance(redirect_uri, str) and redirect_uri and isinstance(config.get("spotify_client_id"), str):
        try:
            ClientCredentials(config.get("spotify_client_id") or "-", "", redirect_uri)
        except ValueError as e:
            errors.append(f"Field 'spotify_redirect_uri' is invalid: {e}")

    return len(errors) == 0, errors


def credentials_from_config(config: Dict[str, Any]) -> ClientCredentials:
    """Build ClientCredentials, raising ValueError with every config problem listed."""

    is_valid, errors = validate_config(config)
    if not is_valid:
        raise ValueError("Invalid Spotify configuration:\n- " + "\n- ".join(errors))

    return ClientCredentials(
        client_id=str(config["spotify_client_id"]).strip(),
        client_secret=str(config.get("spotify_client_secret") or "").strip(),
        redirect_uri=str(config["spotify_redirect_uri"]).strip(),
    )
