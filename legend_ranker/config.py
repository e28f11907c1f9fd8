"""Central configuration loader for legend-ranker."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Project root is the parent of the legend_ranker/ package directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(PROJECT_ROOT / ".env")


def load_settings() -> dict:
    """Load settings from configs/settings.yaml (empty when absent)."""
    settings_path = Path(os.getenv("LEGEND_RANKER_SETTINGS", PROJECT_ROOT / "configs" / "settings.yaml"))
    if not settings_path.exists():
        return {}
    with open(settings_path) as f:
        return yaml.safe_load(f) or {}


SETTINGS = load_settings()


def setting(section: str, key: str, default=None):
    """Look up ``SETTINGS[section][key]`` with a fallback."""
    return (SETTINGS.get(section) or {}).get(key, default)


# --- API Keys ---
class Keys:
    EODHD = os.getenv("EODHD_API_KEY", "")
    STORE_AUTH = os.getenv("LEADERBOARD_STORE_AUTH", "")


# --- Endpoints ---
class Endpoints:
    PROVIDER = os.getenv("EODHD_BASE_URL", setting("provider", "base_url", "https://eodhd.com/api"))
    STORE = os.getenv("LEADERBOARD_STORE_URL", setting("store", "base_url", ""))


# --- Paths ---
class Paths:
    ROOT = PROJECT_ROOT
    CONFIGS = PROJECT_ROOT / "configs"
    ALIASES = PROJECT_ROOT / "configs" / "aliases.yaml"
