"""Config file support for Civicwatch.

Loads default CLI arguments from:
  1. ~/.civicwatch.yaml  (user-level)
  2. ./civicwatch.yaml   (project-level, overrides user-level)
  3. CIVICWATCH_* environment variables (override files)

Example config file:

    # ~/.civicwatch.yaml
    max_distance: 0.5
    min_similarity: 0.3
    max_age: 7d
    policy: either
    order: nearest
    low_spec: true
    api_url: https://reports.example.org/api
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from civicwatch.dedup import get_policy
from civicwatch.models import DuplicateConfig
from civicwatch.utils import parse_since_seconds

logger = logging.getLogger(__name__)

_BOOL_FIELDS = {"verbose", "unique_keywords", "low_spec", "message"}
_INT_FIELDS = {"retries"}
_FLOAT_FIELDS = {"max_distance", "min_similarity", "min_confidence", "buffer", "timeout"}
_STR_FIELDS = {"format", "policy", "order", "max_age", "api_url", "api_token"}


def load_config() -> Dict[str, Any]:
    """Load config from YAML files, merging user + project level."""
    config: Dict[str, Any] = {}

    paths = [
        Path.home() / ".civicwatch.yaml",
        Path.home() / ".civicwatch.yml",
        Path("civicwatch.yaml"),
        Path("civicwatch.yml"),
    ]

    for p in paths:
        if p.is_file():
            try:
                with open(p, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
                if isinstance(data, dict):
                    # Normalize keys: dashes → underscores
                    normalized = {str(k).replace("-", "_"): v for k, v in data.items()}
                    config.update(normalized)
                    logger.debug(f"[Config] Loaded {p}")
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"[Config] Failed to load {p}: {e}")

    return config


def load_env_config() -> Dict[str, Any]:
    """Load config from CIVICWATCH_* environment variables.

    Maps CIVICWATCH_MAX_DISTANCE=0.8 → max_distance=0.8, CIVICWATCH_LOW_SPEC=1 → low_spec=True, etc.
    """
    prefix = "CIVICWATCH_"
    config: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        field = key[len(prefix):].lower()
        if field in _BOOL_FIELDS:
            config[field] = value.lower() in ("1", "true", "yes", "on")
        elif field in _INT_FIELDS:
            try:
                config[field] = int(value)
            except ValueError:
                logger.warning(f"[Config] Ignoring {key}={value!r}: not an integer")
        elif field in _FLOAT_FIELDS:
            try:
                config[field] = float(value)
            except ValueError:
                logger.warning(f"[Config] Ignoring {key}={value!r}: not a number")
        elif field in _STR_FIELDS:
            config[field] = value
    return config


def apply_config_defaults(parser, args):
    """Apply config file defaults to unset CLI args (CLI always wins).

    Priority: CLI flags > env vars (CIVICWATCH_*) > config files > parser defaults.
    """
    config = load_config()
    config.update(load_env_config())
    if not config:
        return args

    for key, value in config.items():
        if not hasattr(args, key):
            continue
        current = getattr(args, key)
        default = parser.get_default(key)
        if current != default:
            continue  # User explicitly set it, don't override

        try:
            if key in _BOOL_FIELDS:
                setattr(args, key, bool(value))
            elif key in _INT_FIELDS:
                setattr(args, key, int(value))
            elif key in _FLOAT_FIELDS:
                setattr(args, key, float(value))
            elif key in _STR_FIELDS:
                setattr(args, key, str(value))
        except (TypeError, ValueError):
            logger.warning(f"[Config] Ignoring invalid value for {key}: {value!r}")

    return args


def duplicate_config_from(values: Mapping[str, Any]) -> DuplicateConfig:
    """Build a DuplicateConfig from config/CLI style keys, falling back to defaults.

    ``max_age`` accepts hours as a number or a duration string like '72h' / '7d'.
    """
    defaults = DuplicateConfig()
    max_age = values.get("max_age")
    if max_age is None or max_age == "":
        max_age_hours = defaults.max_age_hours
    elif isinstance(max_age, (int, float)):
        max_age_hours = float(max_age)
    elif str(max_age).strip().replace(".", "", 1).isdigit():
        max_age_hours = float(max_age)
    else:
        max_age_hours = parse_since_seconds(str(max_age)) / 3600.0

    def _get(key, default):
        value = values.get(key)
        return default if value is None else value

    policy = str(_get("policy", defaults.policy))
    get_policy(policy)  # raises ValueError for unknown names

    return DuplicateConfig(
        max_distance_km=float(_get("max_distance", defaults.max_distance_km)),
        min_keyword_similarity=float(_get("min_similarity", defaults.min_keyword_similarity)),
        max_age_hours=max_age_hours,
        min_confidence=float(_get("min_confidence", defaults.min_confidence)),
        unique_keywords=bool(_get("unique_keywords", defaults.unique_keywords)),
        policy=policy,
    )


def marker_options_from(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Keyword arguments for MarkerSession from config/CLI style keys.

    ``debounce_ms`` is only honoured for library sessions; the CLI evaluates
    its single viewport immediately.
    """
    options: Dict[str, Any] = {}
    if values.get("debounce_ms") is not None:
        options["debounce_s"] = int(values["debounce_ms"]) / 1000.0
    if values.get("buffer") is not None:
        options["buffer"] = float(values["buffer"])
    if values.get("low_spec") is not None:
        options["low_spec"] = bool(values["low_spec"])
    if values.get("order"):
        options["order"] = str(values["order"])
    return options


_STARTER_CONFIG = """\
# Civicwatch configuration — customize your defaults here.
# CLI flags always override these values.

# Duplicate detection
# max_distance: 0.5        # km
# min_similarity: 0.3      # keyword Dice coefficient (0.0-1.0)
# min_confidence: 0.6
# max_age: 7d              # ignore existing reports older than this
# policy: either           # either | confidence | both
# unique_keywords: false   # drop repeated words before scoring

# Map markers
# buffer: 0.1              # degrees added around the viewport
# order: nearest           # nearest | upvotes | recent | input
# low_spec: false          # cap markers at 15 for slow devices

# Report Store
# api_url: https://reports.example.org/api
# timeout: 15
# retries: 2

# Output format: console, json
# format: console
"""


def generate_starter_config() -> Path:
    """Write a starter config file to ~/.civicwatch.yaml (won't overwrite existing)."""
    path = Path.home() / ".civicwatch.yaml"
    if path.exists():
        path = Path.home() / ".civicwatch.yaml.new"
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    return path
