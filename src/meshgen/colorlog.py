"""
File Chain (see DEVELOPER.md):
Doc Version: v1.0.0

- Called by: main.py
- Purpose: ANSI color-coded log formatter for console output

MeshGen Color Log Formatter - ANSI Color-Coded Log Message Formatting

PURPOSE:
    Provides color-coded log output for better readability in terminal.
    Structured events attach their key/value pairs with
    extra={"fields": {...}}; they are appended to the message as key=value
    in insertion order.

WHO READS ME:
    - main.py: Uses CustomFormatter for console log handler

WHO I READ:
    - None (leaf module, no internal dependencies)

COLOR SCHEME:
    - DEBUG: Grey
    - INFO: Cyan
    - WARNING: Yellow
    - ERROR: Red
    - CRITICAL: Bold Red

LOG FORMAT:
    %(asctime)s [%(levelname)s] %(name)s: %(message)s key=value ...
    Example: "2026-10-18 13:04:26,789 [INFO] meshgen.persist: writing new file path=docker-compose.yml"
"""

import logging


def format_fields(fields: dict) -> str:
    """render structured fields as space separated key=value pairs"""
    parts = []
    for key, value in fields.items():
        if isinstance(value, bool):
            value = str(value).lower()
        parts.append(f"{key}={value}")
    return " ".join(parts)


class CustomFormatter(logging.Formatter):
    """return a formatter that prints log messages with color and fields"""

    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    cyan = "\x1b[36;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    template = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    FORMATS = {
        logging.DEBUG: grey,
        logging.INFO: cyan,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record):
        template = self.template
        fields = getattr(record, "fields", None)
        if fields:
            # the fields may contain %-signs, keep them out of the format string
            template += " %(fields_text)s"
            record.fields_text = format_fields(fields)
        if self.color:
            template = self.FORMATS.get(record.levelno, "") + template + self.reset
        formatter = logging.Formatter(template)
        return formatter.format(record)
