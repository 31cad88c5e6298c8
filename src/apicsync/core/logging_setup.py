"""
Central logging for apicsync.

- Console handler: INFO..CRITICAL by default (stderr)
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Action-based file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: masks passwords, login payloads and APIC cookies in msg and % args
- Records carry run_id, action, apic and dn (bind_context adds dn per object)
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class MaskSecretsFilter(logging.Filter):
    """
    Redact APIC credentials (passwords, aaaLogin pwd, session cookies, tokens) from log records.
    """

    _patterns = [
        re.compile(r"(\"pwd\"\s*:\s*\")([^\"]+)", re.IGNORECASE),
        re.compile(r"(APIC-cookie\s*[=:]\s*)([A-Za-z0-9._+/=-]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._+/=-]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill the adapter fields for records emitted through plain module loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        for attr in ("run_id", "action", "apic", "dn"):
            if not hasattr(record, attr):
                setattr(record, attr, "-")
        return True


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _ensure_single_console_handler(
    base_logger: logging.Logger,
    *,
    console_level: str,
    formatter: logging.Formatter,
    mask: logging.Filter,
) -> None:
    """
    Make sure there is exactly ONE StreamHandler bound to sys.stderr
    (pytest may close/replace stdio between tests; also avoid duplicates).
    """
    for h in list(base_logger.handlers):
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
            base_logger.removeHandler(h)
            h.close()

    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(mask)
    sh.addFilter(ContextDefaultsFilter())
    base_logger.addHandler(sh)


def _ensure_app_file_handler(
    base_logger: logging.Logger,
    *,
    base_dir: str,
    file_level: str,
    formatter: logging.Formatter,
    mask: logging.Filter,
) -> None:
    """
    Ensure a single TimedRotatingFileHandler points to <base_dir>/app.log
    for the CURRENT working directory. A handler left on another path is replaced.
    """
    _ensure_dir(base_dir)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))
    Path(desired).touch(exist_ok=True)

    for h in list(base_logger.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            if os.path.abspath(getattr(h, "baseFilename", "")) != desired:
                base_logger.removeHandler(h)
                h.close()

    if not any(
        isinstance(h, logging.handlers.TimedRotatingFileHandler)
        and os.path.abspath(getattr(h, "baseFilename", "")) == desired
        for h in base_logger.handlers
    ):
        rh = logging.handlers.TimedRotatingFileHandler(
            desired,
            when="midnight",
            backupCount=14,
            encoding="utf-8",
            utc=True,
            delay=False,
        )
        rh.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        rh.setFormatter(formatter)
        rh.addFilter(mask)
        rh.addFilter(ContextDefaultsFilter())
        base_logger.addHandler(rh)


def build_logger(
    *,
    name: str = "apicsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    Design:
      - A base logger `<name>` holds console + rotating file handlers.
      - A child logger `<name>.<action>.<run_id>` holds a per-run file handler.
      - Records propagate to the base logger so they appear in all sinks.
    """
    mask = MaskSecretsFilter()

    fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | "
        "run=%(run_id)s action=%(action)s apic=%(apic)s dn=%(dn)s | "
        "%(message)s"
    )
    formatter = _utc_formatter(fmt)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    _ensure_single_console_handler(
        base_logger=base,
        console_level=console_level,
        formatter=formatter,
        mask=mask,
    )
    _ensure_app_file_handler(
        base_logger=base,
        base_dir=base_dir,
        file_level=file_level,
        formatter=formatter,
        mask=mask,
    )

    child_name = f"{name}.{action}.{run_id}"
    child = logging.getLogger(child_name)
    child.setLevel(logging.DEBUG)
    child.propagate = True  # no console here; bubble up to base

    if not getattr(child, "_apicsync_action_configured", False):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        dated_dir = os.path.join(base_dir, today)
        _ensure_dir(dated_dir)

        action_file = os.path.join(dated_dir, f"{action}_{run_id}.log")
        fh = logging.FileHandler(action_file, encoding="utf-8", delay=False)
        fh.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        fh.setFormatter(formatter)
        fh.addFilter(mask)
        fh.addFilter(ContextDefaultsFilter())

        child.addHandler(fh)
        child._apicsync_action_configured = True  # type: ignore[attr-defined]

    adapter = logging.LoggerAdapter(
        child,
        {
            "run_id": run_id,
            "action": action,
            "apic": (extra or {}).get("apic"),
            "dn": (extra or {}).get("dn", "-"),
        },
    )
    adapter.debug("Logger initialised")
    return adapter


def bind_context(logger: Any, **context: Any) -> logging.LoggerAdapter:
    """Adapter over the same logger with `context` merged into its extra fields (e.g. dn)."""
    base = getattr(logger, "logger", logger)
    merged = dict(getattr(logger, "extra", None) or {})
    merged.update(context)
    return logging.LoggerAdapter(base, merged)
