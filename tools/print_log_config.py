import json
import logging
import os
import sys

from async_import.config import get_settings


def get_log_config():
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    settings = get_settings()

    return {
        "log_dir": os.path.abspath(settings.log_dir),
        "job_log_dir": os.path.abspath(settings.job_log_dir),
        "log_level": logging.getLevelName(log_level),
        "log_json": os.getenv("LOG_JSON", "false").lower() == "true",
        "retention_days": int(os.getenv("LOG_RETENTION_DAYS", "7")),
        "rotate_utc": os.getenv("LOG_ROTATE_UTC", "false").lower() == "true",
        "log_request_bodies": os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true",
    }


def main():
    sys.stdout.write(json.dumps(get_log_config(), indent=2) + "\n")


if __name__ == "__main__":
    main()
