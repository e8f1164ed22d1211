"""
Service Logger — writes timestamped lines to console and a per-channel log file.
"""
import os
from datetime import datetime

from donation_core.config import get_settings


def log_event(channel: str, message: str) -> None:
    """Log a line as '<ts> - <CHANNEL>: <message>' to stdout and LOG_DIR/<channel>.log."""
    settings = get_settings()
    ts = datetime.now().isoformat()
    line = f"{ts} - {channel.upper()}: {message}"
    print(line)
    try:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        with open(os.path.join(settings.LOG_DIR, f"{channel.lower()}.log"), "a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError as exc:
        print(f"{ts} - LOGGER: could not write {channel} log ({exc})")
