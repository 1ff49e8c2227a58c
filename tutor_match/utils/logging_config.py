"""
Logging setup for the tutor matching service.

Everything goes through ``logging.config.dictConfig``. ``configure_for_environment``
picks a profile from ``ENVIRONMENT`` and is called once by ``tutor_match.main``;
importing this module has no side effects.
"""
import logging
import logging.config
import os
import time
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FORMATS = {
    "simple": "%(levelname)s - %(name)s - %(message)s",
    "detailed": "%(asctime)s | %(levelname)-8s | %(name)-36s | %(funcName)-20s:%(lineno)-4d | %(message)s",
    "json": '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
}

# level None means "use LOG_LEVEL"
ENVIRONMENT_PROFILES = {
    "production": {"level": None, "files": True, "style": "json"},
    "development": {"level": "DEBUG", "files": True, "style": "detailed"},
    "testing": {"level": "WARNING", "files": False, "style": "simple"},
}

# Chatty client libraries stay at WARNING whatever the service level is
QUIET_LIBRARIES = ("pymongo", "motor", "urllib3", "httpx")

MAX_LOG_BYTES = 10 * 1024 * 1024


def _rotating_handler(filename: Path, level: str) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "service",
        "filename": str(filename),
        "maxBytes": MAX_LOG_BYTES,
        "backupCount": 5,
        "encoding": "utf8",
    }


def build_logging_config(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    console: bool = True,
    files: bool = True,
    style: str = "detailed",
) -> Dict[str, Any]:
    """
    Build the dictConfig mapping.

    With ``files`` on, everything goes to ``tutor_match_<date>.log`` and
    ERROR and above is duplicated to ``tutor_match_errors_<date>.log``,
    both rotating at 10MB.
    """
    handler_names = []
    handlers: Dict[str, Any] = {}

    if console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "service",
            "stream": "ext://sys.stdout",
        }
        handler_names.append("console")

    if files:
        log_dir = Path(log_dir or os.getenv("LOG_DIR", "logs"))
        stamp = date.today().strftime("%Y%m%d")
        handlers["file"] = _rotating_handler(log_dir / f"tutor_match_{stamp}.log", level)
        handlers["error_file"] = _rotating_handler(log_dir / f"tutor_match_errors_{stamp}.log", "ERROR")
        handler_names.extend(["file", "error_file"])

    loggers: Dict[str, Any] = {
        "uvicorn": {"level": "INFO", "handlers": list(handler_names), "propagate": False},
        "uvicorn.access": {"level": "INFO", "handlers": list(handler_names), "propagate": False},
    }
    for name in QUIET_LIBRARIES:
        loggers[name] = {"level": "WARNING"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "service": {
                "format": LOG_FORMATS.get(style, LOG_FORMATS["detailed"]),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "root": {"level": level, "handlers": handler_names},
        "loggers": loggers,
    }


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    console: bool = True,
    files: bool = True,
    style: str = "detailed",
) -> None:
    config = build_logging_config(level=level, log_dir=log_dir, console=console, files=files, style=style)
    if files:
        Path(config["handlers"]["file"]["filename"]).parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(config)
    get_logger("logging").info(f"Logging configured - level={level}, style={style}, files={files}")


def configure_for_environment() -> str:
    """Apply the logging profile for ENVIRONMENT and return the profile name used."""
    environment = os.getenv("ENVIRONMENT", "development").lower()
    profile = ENVIRONMENT_PROFILES.get(environment, {"level": None, "files": True, "style": "detailed"})
    level = profile["level"] or os.getenv("LOG_LEVEL", "INFO").upper()
    setup_logging(level=level, files=profile["files"], style=profile["style"])
    return environment


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``tutor_match`` namespace."""
    if name.startswith("tutor_match"):
        return logging.getLogger(name)
    return logging.getLogger(f"tutor_match.{name}")


class PerformanceMonitor:
    """
    Times one phase of a matching request.

    Logs at DEBUG normally, WARNING when ``threshold_ms`` is exceeded and
    ERROR if the block raises. The exception is never suppressed.
    """

    def __init__(self, operation_name: str, logger: logging.Logger = None, threshold_ms: float = 1000):
        self.operation_name = operation_name
        self.logger = logger or get_logger("performance")
        self.threshold_ms = threshold_ms
        self.elapsed_ms = 0.0
        self._started = None

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        extra = {"phase": self.operation_name, "elapsed_ms": round(self.elapsed_ms, 2)}

        if exc_type is not None:
            self.logger.error(f"{self.operation_name} failed after {self.elapsed_ms:.2f}ms: {exc_val}", extra=extra)
        elif self.elapsed_ms > self.threshold_ms:
            self.logger.warning(
                f"{self.operation_name} took {self.elapsed_ms:.2f}ms (threshold {self.threshold_ms}ms)", extra=extra
            )
        else:
            self.logger.debug(f"{self.operation_name} took {self.elapsed_ms:.2f}ms", extra=extra)
        return False
