"""Environment helpers for scripts that run outside the FastAPI settings layer."""

import logging
from typing import Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)


def load_env_file(path: Optional[str] = None) -> bool:
    """Load a .env file into os.environ without overriding exported variables.

    WHAT:
        Reads `path`, or the nearest .env found from the working directory
        upwards, and sets only the variables that are not already set.
    WHY:
        ANALYTICS_DATABASE_URL and REDIS_URL are exported by the deployment;
        a developer's .env must fill gaps locally, never replace them.

    Returns:
        True when a file was found and loaded
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        logger.debug("[ENV] No .env file found")
        return False

    loaded = load_dotenv(env_path, override=False)
    if loaded:
        logger.info(f"[ENV] Loaded {env_path} (existing variables were NOT overwritten)")
    return loaded
