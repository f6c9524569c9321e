import os
import yaml

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

def get_config_path():
    return os.getenv("SCOREBOOK_CONFIG_PATH") or os.path.join(PROJECT_ROOT, "config", "config.yaml")

def load_config():
    config_path = get_config_path()
    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}

def config_section(config, name):
    """Return config[name] as a dict, tolerating a missing or empty section."""
    section = (config or {}).get(name)
    return section if isinstance(section, dict) else {}
