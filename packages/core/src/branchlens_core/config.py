import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_SERVER = "https://dart-review.googlesource.com"

DEFAULT_CONFIG: dict = {
    "gerrit_server": DEFAULT_SERVER,  # used for branches whose git config records no server
    "max_workers": 16,  # concurrent Gerrit batch groups
    "show_local": True,
    "show_gerrit": True,
    "show_url": False,
    "status": [],  # e.g. ["active", "wip"]; see branchlens_core.filtering.STATUS_VALUES
    "since": None,
    "before": None,
    "diverged": False,
    "sort": None,  # local-date | gerrit-date | status | divergences | name
    "sort_direction": "asc",
}

DEFAULT_CONFIG_PATH = "~/.branchlens.yml"


def load_config(config_path: str = DEFAULT_CONFIG_PATH, cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. The YAML config file (~/.branchlens.yml unless overridden)
      3. BRANCHLENS_GERRIT_SERVER environment variable
      4. CLI argument overrides

    The file is never written; a missing file just means defaults.
    """
    config = {**DEFAULT_CONFIG, "status": list(DEFAULT_CONFIG["status"])}

    path = Path(config_path).expanduser()
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"Config file {path} must contain a mapping, got {type(file_config).__name__}.")
        config.update(file_config)

    # Environment overrides the file, CLI flags override both.
    server = os.environ.get("BRANCHLENS_GERRIT_SERVER")
    if server:
        config["gerrit_server"] = server

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # A single status in YAML ("status: active") is accepted as a one-item list.
    if isinstance(config["status"], str):
        config["status"] = [config["status"]]

    return config
