from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path


class Logger:
    """
    Prints a message with a human-readable timestamp, and appends it to a log file if one is set.
    A log file that cannot be written is reported on stderr; the message still reaches stdout.
    """

    def __init__(self, log_file: str | None = None):
        self.log_file = log_file or None

    def __call__(self, message: str) -> None:
        ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        entry = f"[{ts}] {message}"
        print(entry, flush=True)
        if self.log_file:
            try:
                Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(entry + "\n")
            except OSError as e:
                print(f"[{ts}] WARN: Failed to write log file {self.log_file}: {e}", file=sys.stderr, flush=True)


default_log = Logger()
