import configparser
import os
from typing import Optional

CONFIG_DIR = os.path.join(os.getenv("HOME", os.path.expanduser("~")), ".homeshell")
CONFIG_FILE = os.path.join(CONFIG_DIR, "homeshell.cfg")

DEFAULT_SECTION = "homeshell"

# Keys understood by the delegator; anything else in the file is ignored.
CONFIG_KEYS = [
    "image",
    "container_home",
    "docker_command",
    "docker_version",
    "docker_arch",
    "docker_sha256",
    "docker_verify",
    "docker_url",
    "fetch_image",
    "unpack_image",
    "credential_helpers",
    "scratch_dir",
]


def ensure_config_exists():
    """
    Ensure that the .homeshell dir and homeshell.cfg exist.
    Returns configparser.ConfigParser for reading.
    """
    if not os.path.exists(CONFIG_DIR):
        os.makedirs(CONFIG_DIR, exist_ok=True)
    exists = os.path.isfile(CONFIG_FILE)
    config = configparser.ConfigParser()
    if exists:
        config.read(CONFIG_FILE)
    if DEFAULT_SECTION not in config:
        config[DEFAULT_SECTION] = {}
    if not exists:
        with open(CONFIG_FILE, "w") as f:
            config.write(f)
    return config


def get_value(key: str, config_file: Optional[str] = None):
    config = configparser.ConfigParser()
    config.read(config_file or CONFIG_FILE)
    val = config.get(DEFAULT_SECTION, key, fallback=None)
    if val is not None and not val.strip():
        return None
    return val


def get_list_value(key: str, config_file: Optional[str] = None) -> Optional[list[str]]:
    """Read a comma-separated value, or None when the key is unset."""
    val = get_value(key, config_file)
    if val is None:
        return None
    return [item.strip() for item in val.split(",") if item.strip()]


def get_bool_value(key: str, default: bool, config_file: Optional[str] = None) -> bool:
    val = get_value(key, config_file)
    if val is None:
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def get_config_keys():
    """Return the keys that can be set, plus any extra keys already present."""
    config = configparser.ConfigParser()
    config.read(CONFIG_FILE)
    keys = set(CONFIG_KEYS)
    if DEFAULT_SECTION in config:
        keys.update(config[DEFAULT_SECTION].keys())
    return sorted(keys)


def get_all_values() -> dict[str, str]:
    config = configparser.ConfigParser()
    config.read(CONFIG_FILE)
    if DEFAULT_SECTION not in config:
        return {}
    return dict(config[DEFAULT_SECTION])


def set_config_value(key: str, value: str):
    config = ensure_config_exists()
    config[DEFAULT_SECTION][key] = value
    with open(CONFIG_FILE, "w") as f:
        config.write(f)


def unset_config_value(key: str) -> bool:
    """Remove a key from the config file. Returns True if it was present."""
    config = ensure_config_exists()
    removed = config.remove_option(DEFAULT_SECTION, key)
    if removed:
        with open(CONFIG_FILE, "w") as f:
            config.write(f)
    return removed
