import os
from pathlib import Path
from typing import Optional

import yaml

from prvisual_core.providers.command import DEFAULT_COMMAND
from prvisual_core.utils.context import DEFAULT_LOCKFILE_SUFFIXES, MAX_CONTEXT_BYTES

DEFAULT_CONFIG: dict = {
    "brief_provider": "gemini",  # gemini | openai | anthropic | command
    "image_provider": "gemini",  # gemini | openai
    "brief_command": DEFAULT_COMMAND,  # used when brief_provider is "command"
    "max_context_bytes": MAX_CONTEXT_BYTES,
    "skip_suffixes": list(DEFAULT_LOCKFILE_SUFFIXES),
    "max_attempts": 3,
    "base_delay": 2.0,  # seconds; doubles per attempt
    "call_timeout": 90,  # seconds per external call
    "lease_seconds": 600,  # a workflow claim not renewed for this long can be taken over
    "resume_interval": 300,  # seconds between server sweeps for interrupted workflows
    "billing": "polar",  # polar | static
    "polar_product_ids": [],
    "usage_cost_cents": 13.9,
    "store": "sqlite",  # sqlite | memory
    "store_path": ".prvisual.db",
    "artifact_store": "filesystem",  # filesystem | memory
    "artifact_dir": "artifacts",
    "public_url": "http://localhost:8000",
    "artifact_base_url": None,  # None = {public_url}/artifacts
}

_ENV_CREDENTIALS = {
    "webhook_secret": "GITHUB_WEBHOOK_SECRET",
    "github_app_id": "GITHUB_APP_ID",
    "github_private_key": "GITHUB_PRIVATE_KEY",
    "github_token": "GITHUB_TOKEN",
    "gemini_api_key": "GEMINI_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "polar_api_key": "POLAR_API_KEY",
}

_PROVIDER_KEYS = {
    "gemini": "gemini_api_key",
    "openai": "openai_api_key",
    "anthropic": "anthropic_api_key",
}


def load_config(config_path: str = ".prvisual.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prvisual.yml in the current directory
      3. CLI argument overrides
    Credentials always come from environment variables.
    """
    config = {
        **DEFAULT_CONFIG,
        "skip_suffixes": list(DEFAULT_CONFIG["skip_suffixes"]),
        "polar_product_ids": list(DEFAULT_CONFIG["polar_product_ids"]),
    }

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    for key, env_var in _ENV_CREDENTIALS.items():
        config[key] = os.environ.get(env_var)

    # PEM keys pasted into env files often carry literal "\n" sequences.
    if config["github_private_key"] and "\\n" in config["github_private_key"]:
        config["github_private_key"] = config["github_private_key"].replace("\\n", "\n")

    if not config.get("artifact_base_url"):
        config["artifact_base_url"] = config["public_url"].rstrip("/") + "/artifacts"

    return config


def missing_credentials(config: dict, server: bool = True) -> list[str]:
    """Return the environment variables the configured setup still needs.

    ``server`` selects the hosted path (GitHub App + webhook secret);
    otherwise a personal GitHub token is required instead.
    """
    missing = []
    if server:
        for key in ("webhook_secret", "github_app_id", "github_private_key"):
            if not config.get(key):
                missing.append(_ENV_CREDENTIALS[key])
    elif not config.get("github_token"):
        missing.append(_ENV_CREDENTIALS["github_token"])

    for provider in {config["brief_provider"], config["image_provider"]}:
        key = _PROVIDER_KEYS.get(provider)
        if key and not config.get(key) and _ENV_CREDENTIALS[key] not in missing:
            missing.append(_ENV_CREDENTIALS[key])

    if config.get("billing") == "polar" and not config.get("polar_api_key"):
        missing.append(_ENV_CREDENTIALS["polar_api_key"])
    return missing
