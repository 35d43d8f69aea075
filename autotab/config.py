"""
autotab/config.py

Centralized environment variable configuration.
"""

import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()


class Config():
    """
    Centralized configuration for environment variables.
    """

    # logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    LOG_DATE_FORMAT: str = os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S")

    # chrome devtools
    REMOTE_DEBUGGING_ADDRESS: str = os.getenv("REMOTE_DEBUGGING_ADDRESS", "http://127.0.0.1:9222")
    CDP_COMMAND_TIMEOUT: float = float(os.getenv("CDP_COMMAND_TIMEOUT", "10.0"))

    @classmethod
    def as_dict(cls) -> dict[str, Any]:
        """
        Return a dictionary of all UPPERCASE class attributes and their values.
        Return:
            dict[str, Any]: A dictionary of all UPPERCASE class attributes and their values.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }
