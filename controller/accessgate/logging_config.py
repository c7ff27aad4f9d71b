"""Logging bootstrap for the kiosk controller."""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

SESSION_LOGGER = "accessgate.session_controller"


def _logger_levels(level: str, module_levels: Optional[Mapping[str, str]]) -> Dict[str, Dict[str, Any]]:
    loggers: Dict[str, Dict[str, Any]] = {
        "httpx": {"level": "WARNING"},
        "httpcore": {"level": "WARNING"},
        # Scan decisions also go to their own file so grants / denials can be audited per day.
        SESSION_LOGGER: {"level": level, "handlers": ["decisions_file"]},
    }
    for name, module_level in (module_levels or {}).items():
        loggers.setdefault(name, {})["level"] = module_level.upper()
    return loggers


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    retention_days: int = 14,
    module_levels: Optional[Mapping[str, str]] = None,
) -> None:
    """Console, a midnight-rotating runtime log, and a separate access-decision log.

    ``module_levels`` overrides the level of individual loggers, e.g.
    ``{"accessgate.session_controller": "DEBUG"}`` to see skipped ticks.
    """

    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    level = level.upper()
    backup_count = max(int(retention_days), 1)

    def _rotating(filename: str, handler_level: str) -> Dict[str, Any]:
        return {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "formatter": "default",
            "level": handler_level,
            "filename": str(log_dir / filename),
            "when": "midnight",
            "backupCount": backup_count,
            "utc": True,
            "delay": True,
            "encoding": "utf-8",
        }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                },
                "runtime_file": _rotating("controller-runtime.log", level),
                "decisions_file": _rotating("access-decisions.log", "INFO"),
            },
            "loggers": _logger_levels(level, module_levels),
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )


__all__ = ["configure_logging", "SESSION_LOGGER"]
