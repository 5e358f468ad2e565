import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

# Third-party loggers that only matter while debugging
NOISY_LIBRARIES = ("asyncio", "prompt_toolkit")

class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Network events are applied from transport threads, so every entry names
    the thread it was logged on.
    """
    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.ERROR:
            entry["module"] = record.module
            entry["line"] = record.lineno
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)

def _file_handler(log_filename, max_size_mb, backup_count):
    folder = os.path.dirname(log_filename)
    if folder:
        os.makedirs(folder, exist_ok=True)

    handler = RotatingFileHandler(
        log_filename,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding='utf-8'
    )
    handler.setFormatter(JsonFormatter(datefmt='%Y-%m-%d %H:%M:%S'))
    return handler

def setup_logging(log_filename="logs/app.jsonl", debug_mode=False, max_size_mb=10, backup_count=5):
    root = logging.getLogger()
    # Calling this twice must not duplicate output
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(logging.DEBUG if debug_mode else logging.INFO)
    root.addHandler(_file_handler(log_filename, max_size_mb, backup_count))

    # The chat owns stdout; only warnings reach the terminal
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s', datefmt='%H:%M:%S'))
    console_handler.setLevel(logging.WARNING)
    root.addHandler(console_handler)

    for lib in NOISY_LIBRARIES:
        logging.getLogger(lib).setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    root.debug(f"Debug logging enabled (Log: {log_filename}, Max: {max_size_mb}MB x {backup_count})")
    return root
