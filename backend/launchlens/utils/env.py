"""Local .env loading for development checkouts."""

import logging
from typing import Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)


def load_env_file(path: Optional[str] = None) -> bool:
    """Load a .env file into os.environ without overriding exported variables.

    Searches upward from the working directory when no path is given.
    Returns True when a file was found and read.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        logger.debug("[ENV] No .env file found")
        return False

    load_dotenv(env_path, override=False)
    logger.info("[ENV] Loaded %s (exported variables take precedence)", env_path)
    return True
