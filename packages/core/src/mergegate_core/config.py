import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "judge_model": None,  # None = same provider as `model`
    "base": "main",
    "remote": "origin",
    "max_iterations": 10,
    "local_review_rounds": 3,
    "poll_deadline_seconds": 900,
    "poll_interval_seconds": 30,
    "rewrite_history": True,
    "rewrite_threshold": 3,  # rewrite only when the branch has more commits than this
    "rewrite_group_depth": 1,  # path components used to group commits during a rewrite
    "review_request_body": "@codex review",
    "external_reviewer": None,  # login whose comments count as external review; None = anyone else
    "merge_method": "squash",
    "checks": [],  # shell commands that must exit 0 after every fix (formatter, linter, tests)
    "guidelines": None,  # None = use built-in default; set to a path string to override
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "max_chars_per_file": 20000,
    "confidence_threshold": "medium",
    "store": "sqlite",
    "store_path": ".mergegate.db",
    "gist_id": None,
    "lock_dir": ".mergegate/locks",
}

BUILTIN_GUIDELINES_DIR = Path(__file__).parent / "guidelines"
_BUILTIN_DEFAULT = BUILTIN_GUIDELINES_DIR / "default.md"


def load_config(config_path: str = ".mergegate.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .mergegate.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"]), "checks": list(DEFAULT_CONFIG["checks"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if config["max_iterations"] < 1:
        raise ValueError("max_iterations must be at least 1")
    if config["poll_interval_seconds"] <= 0:
        raise ValueError("poll_interval_seconds must be positive")

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def load_guidelines(config: dict) -> str:
    """
    Load review guidelines for the local reviewer.

    If ``guidelines`` is set in config, loads from that path (relative to cwd).
    Otherwise falls back to the built-in default.
    """
    custom_path = config.get("guidelines")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Guidelines file not found: {custom_path}")
        return p.read_text()

    if _BUILTIN_DEFAULT.exists():
        return _BUILTIN_DEFAULT.read_text()

    raise FileNotFoundError("No guidelines configured and built-in default is missing.")
