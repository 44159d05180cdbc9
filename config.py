"""
Settings for the tournament engine, read from the environment.
"""

import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

INITIAL_RATING = 1000
MAX_SETS = 7
MAX_SET_POINTS = 99
MIN_PLAYERS = 2


def _int_env(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def database_url():
    url = os.getenv("DATABASE_URL")
    if not url or not url.strip():
        return None
    # Render hands out postgres:// URLs, psycopg2 wants postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def load_config():
    """Collect settings into a mapping suitable for Flask's config."""
    k_factor = _int_env("DEFAULT_K_FACTOR", 32)
    if k_factor <= 0:
        raise RuntimeError("DEFAULT_K_FACTOR must be positive")
    group_size = _int_env("DEFAULT_GROUP_SIZE", 4)
    if group_size < 2:
        raise RuntimeError("DEFAULT_GROUP_SIZE must be at least 2")
    return {
        "DATABASE_URL": database_url(),
        "SQLITE_PATH": os.getenv("SQLITE_PATH")
        or os.path.join(BASE_DIR, "tournaments.db"),
        "DEFAULT_K_FACTOR": k_factor,
        "CANCELLATION_WINDOW_DAYS": _int_env("CANCELLATION_WINDOW_DAYS", 5),
        "DEFAULT_GROUP_SIZE": group_size,
        "DEFAULT_ADVANCING_PER_GROUP": _int_env("DEFAULT_ADVANCING_PER_GROUP", 2),
    }
