import os
import time
import zlib
from datetime import datetime
from pathlib import Path

from constants import MAX_NICK_LENGTH, TOPIC_DATE_FORMAT

def format_bytes(size):
    power = 2**10
    n = 0
    power_labels = {0 : '', 1: 'K', 2: 'M', 3: 'G', 4: 'T'}
    size = float(size)
    while size >= power and n < len(power_labels) - 1:
        size /= power
        n += 1
    return f"{size:.2f} {power_labels[n]}B"

def is_valid_nick(nick: str) -> bool:
    if not nick or len(nick) > MAX_NICK_LENGTH:
        return False
    return nick.isalpha()

def get_file_with_incremented_name(path) -> Path:
    """Returns the first ``name_N.ext`` next to ``path`` that does not exist yet."""
    path = Path(path)
    stem, suffix = path.stem, path.suffix
    # ".bashrc" style names have no suffix, stem keeps the dot
    counter = 1
    while True:
        candidate = path.with_name(f"{stem}_{counter}{suffix}")
        if not candidate.exists():
            return candidate
        counter += 1

def how_long_from_now(timestamp, now=None) -> str:
    now = time.time() if now is None else now
    elapsed = max(0, int(now - timestamp))
    days, rest = divmod(elapsed, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{days} days, {hours:02d}:{minutes:02d}:{seconds:02d}"

def format_topic_time(timestamp) -> str:
    return datetime.fromtimestamp(timestamp).strftime(TOPIC_DATE_FORMAT)

def file_identifier(path) -> int:
    return zlib.crc32(os.path.abspath(str(path)).encode("utf-8"))
