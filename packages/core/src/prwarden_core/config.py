import os
from pathlib import Path
from typing import Optional

import yaml

from prwarden_core.utils.size import parse_size

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "policy": None,  # None = use built-in default; set to a path string to override
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "review_draft_prs": False,
    "skip_reviewed_head": False,  # true = exit early when the head commit already has a verdict
    "max_files_to_review": 50,
    "max_diff_bytes": "500KB",  # larger diffs are skipped entirely
    "max_prompt_diff_bytes": "16KB",  # larger diffs are chunked across several model calls
    "max_issues_per_file": 5,
    "max_commit_messages": 50,
    "max_concurrent_reviews": 8,
    "warn_budget": 3,
    "japanese_detection_threshold": 0.3,
    "retry": {"max_retries": 5, "base_delay": 2, "max_delay": 30},
    "ai_circuit": {"failure_threshold": 3, "cooldown_seconds": 30},
    "github_circuit": {"failure_threshold": 5, "cooldown_seconds": 60},
}

_SIZE_KEYS = ("max_diff_bytes", "max_prompt_diff_bytes")
_NESTED_KEYS = ("retry", "ai_circuit", "github_circuit")

BUILTIN_POLICIES_DIR = Path(__file__).parent / "policies"
_BUILTIN_DEFAULT = BUILTIN_POLICIES_DIR / "default.md"


def load_config(config_path: str = ".prwarden.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prwarden.yml in the current directory
      3. CLI argument overrides

    Nested sections (retry, ai_circuit, github_circuit) are merged key by key,
    and size values such as "16KB" are converted to byte counts.
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"])}
    for key in _NESTED_KEYS:
        config[key] = dict(DEFAULT_CONFIG[key])

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        for key, value in file_config.items():
            if key in _NESTED_KEYS and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    for key in _SIZE_KEYS:
        config[key] = parse_size(config[key])

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def load_policy(config: dict) -> str:
    """
    Load the review policy.

    If ``policy`` is set in config, loads from that path (relative to cwd).
    Otherwise falls back to the built-in default.
    """
    custom_path = config.get("policy")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Policy file not found: {custom_path}")
        return p.read_text()

    if _BUILTIN_DEFAULT.exists():
        return _BUILTIN_DEFAULT.read_text()

    raise FileNotFoundError("No policy configured and built-in default is missing.")
