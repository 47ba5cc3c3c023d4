# services/util.py

import os


def get_env(env: str):
    value = os.environ.get(env)
    return value.strip() if value else None


def get_data_path() -> str:
    """Directory holding the config file and the SQLite store."""
    return get_env('BRIDGE_DATA_PATH') or 'data'


def get_log_path() -> str:
    return get_env('BRIDGE_LOG_PATH') or 'logs'
