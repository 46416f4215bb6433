# blossom/modules/logging.py
# -*- coding: utf-8 -*-
"""
Blossom logging

Features:
 - Integration with modules.config (re-applied on config reload)
 - Console color formatter
 - Rotating file handler
 - Module-level configurable log levels (module_levels)
 - Thread-safe reconfiguration and per-level metrics
"""

from __future__ import annotations
import sys
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Dict, Any, List, Optional

from blossom.modules.config import get_config, register_watch_callback

# Logger for this module
_logger = logging.getLogger("blossom.logging")

DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(blossom_module)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(blossom_module)s] %(message)s"

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# Module-level filter for per-module levels
# ----------------------
class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        # convert level names to numeric
        self.module_levels = {m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        # records from plain blossom.* loggers carry no module tag
        if not hasattr(record, "blossom_module"):
            record.blossom_module = record.name.rsplit(".", 1)[-1]
        mod = record.blossom_module
        if mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True

# ----------------------
# BlossomLogger (singleton)
# ----------------------
class BlossomLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()

        # core python logger
        self._root = logging.getLogger("blossom")

        # internal state
        self._handlers: List[logging.Handler] = []
        self._module_filter = ModuleLevelFilter({})
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}

        self._apply_config(get_config().merged.get("logging", {}))

        # re-apply on config reload
        register_watch_callback(lambda new_cfg: self.reload_config())

        self._inited = True

    def _count_levels_filter(self, record):
        name = record.levelname
        if name in self._metrics:
            self._metrics[name] += 1
        return True

    # ----------------------
    # Configuration (apply/hot-reload)
    # ----------------------
    def _apply_config(self, cfg: Dict[str, Any]):
        with self._lock:
            # clean old handlers
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            # module-level override map; attached to handlers so records from child loggers pass it too
            self._module_filter = ModuleLevelFilter(cfg.get("module_levels", {}) or {})

            level = getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO)
            fmt = cfg.get("format") or DEFAULT_FORMAT
            datefmt = cfg.get("datefmt", "%H:%M:%S")

            # console handler
            ch = logging.StreamHandler(sys.stdout)
            ch.setLevel(level)
            ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True))))
            ch.addFilter(self._module_filter)
            ch.addFilter(self._count_levels_filter)
            self._root.addHandler(ch)
            self._handlers.append(ch)

            # rotating file handler
            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                file_path.parent.mkdir(parents=True, exist_ok=True)
                max_bytes = cfg.get("max_size_bytes") or 10 * 1024 * 1024
                backups = int(cfg.get("backups", 5))
                fh = logging.handlers.RotatingFileHandler(str(file_path), maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
                fh.setLevel(getattr(logging, str(cfg.get("file_level", "DEBUG")).upper(), logging.DEBUG))
                fh.setFormatter(logging.Formatter(cfg.get("format") or FILE_FORMAT, datefmt=datefmt))
                fh.addFilter(self._module_filter)
                self._root.addHandler(fh)
                self._handlers.append(fh)

            self._root.setLevel(level)
            _logger.debug("logging: configuration applied")

    def reload_config(self):
        """Reload config from modules.config and re-apply logging config."""
        self._apply_config(get_config().merged.get("logging", {}))

    def set_level(self, level: int):
        with self._lock:
            self._root.setLevel(level)
            for h in self._handlers:
                if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
                    h.setLevel(level)

    # ----------------------
    # Public API
    # ----------------------
    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'blossom_module' into records."""
        base = logging.getLogger(f"blossom.{module_name}")
        return logging.LoggerAdapter(base, {"blossom_module": module_name})

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER: Optional[BlossomLogger] = None
_GLOBAL_LOCK = threading.Lock()

def _manager() -> BlossomLogger:
    global _GLOBAL_LOGGER
    with _GLOBAL_LOCK:
        if _GLOBAL_LOGGER is None:
            _GLOBAL_LOGGER = BlossomLogger()
        return _GLOBAL_LOGGER

def get_logger(module: str) -> logging.LoggerAdapter:
    return _manager().get_logger(module)

def set_level(level: int):
    return _manager().set_level(level)

def reload_config():
    return _manager().reload_config()

def get_metrics():
    return _manager().get_metrics()
