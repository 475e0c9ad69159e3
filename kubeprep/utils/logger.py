#!/usr/bin/env python3
"""
Logging framework for kubeprep
Colored console output for the operator, JSON lines on disk for later review
"""

import logging
import logging.handlers
import sys
import json
from typing import Dict, Optional, Any
from enum import Enum
from dataclasses import dataclass, asdict

from ..config.settings import settings
from .helpers import ensure_directory, truncate_string

class LogCategory(Enum):
    """Log categories for better organization"""
    SYSTEM = "system"
    WORKFLOW = "workflow"

@dataclass
class LogEntry:
    """Structured log entry"""
    timestamp: float
    level: str
    category: str
    component: str
    message: str
    step: Optional[str] = None
    run_id: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_entry = LogEntry(
            timestamp=record.created,
            level=record.levelname,
            category=getattr(record, 'category', LogCategory.SYSTEM.value),
            component=record.name,
            message=record.getMessage(),
            step=getattr(record, 'step', None),
            run_id=getattr(record, 'run_id', None),
            extra=getattr(record, 'details', None) if self.include_extra else None
        )

        return log_entry.to_json()

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()
        self.plain = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return self.plain.format(record)

        color = self.COLORS.get(record.levelname, '')
        reset = self.COLORS['RESET']

        step_info = ""
        if getattr(record, 'step', None):
            step_info = f" [{record.step}]"

        formatter = logging.Formatter(
            f"{color}%(asctime)s{reset}{step_info} - "
            f"{color}%(levelname)s{reset} - %(message)s",
            datefmt="%H:%M:%S"
        )
        return formatter.format(record)

class WorkflowLogger:
    """Logger bound to a single workflow run"""

    def __init__(self, run_id: str, component: str = "workflow"):
        self.run_id = run_id
        self.component = component
        self.current_step = None

        self.logger = logging.getLogger(f"kubeprep.{component}.{run_id}")
        self.logger.propagate = False

        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        """Console for the operator plus one JSON file per run"""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColoredFormatter())
        console_handler.setLevel(log_manager.console_level)
        self.logger.addHandler(console_handler)

        logs_directory = settings.storage.logs_directory
        ensure_directory(logs_directory)
        file_handler = logging.FileHandler(logs_directory / f"{self.component}_{self.run_id}.log")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        self.logger.addHandler(file_handler)

        self.logger.setLevel(logging.DEBUG)

    def _add_context(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        context = {
            'run_id': self.run_id,
            'category': LogCategory.WORKFLOW.value,
        }
        if self.current_step:
            context['step'] = self.current_step
        if extra:
            context['details'] = extra
        return context

    def set_step(self, step: Optional[str]):
        self.current_step = step

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.debug(message, extra=self._add_context(extra))

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.info(message, extra=self._add_context(extra))

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.warning(message, extra=self._add_context(extra))

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.logger.error(message, extra=self._add_context(extra))

    def step_start(self, step: str, description: str = ""):
        self.set_step(step)
        message = f"🚀 Starting: {step}"
        if description:
            message += f" - {description}"
        self.info(message)

    def step_success(self, step: str, duration: Optional[float] = None):
        message = f"✅ Completed: {step}"
        if duration:
            message += f" ({duration:.2f}s)"
        self.info(message)

    def step_skipped(self, step: str, reason: str = ""):
        message = f"⏭️  Skipped: {step}"
        if reason:
            message += f" - {reason}"
        self.info(message)

    def step_error(self, step: str, error: str, duration: Optional[float] = None):
        message = f"❌ Failed: {step} - {error}"
        if duration:
            message += f" (after {duration:.2f}s)"
        self.error(message)

    def command_executed(self, command: str, success: bool, output: str = "",
                         exit_code: Optional[int] = None, duration: Optional[float] = None):
        status = "✅" if success else "❌"
        message = f"{status} Command: {command}"

        extra = {
            'command': command,
            'success': success,
            'exit_code': exit_code,
            'output': truncate_string(output, 500) if output else "",
        }
        if duration:
            extra['duration'] = duration
            message += f" ({duration:.2f}s)"

        if success:
            self.debug(message, extra=extra)
        else:
            self.warning(message, extra=extra)

    def close(self):
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

class LogManager:
    """Global log manager"""

    def __init__(self):
        self.console_level = getattr(logging, settings.log_level.value)
        self.workflow_loggers: Dict[str, WorkflowLogger] = {}
        self._configured = False

    def setup_root_logger(self, debug: bool = False):
        """Console plus rotating JSON files for everything outside a run"""
        if debug:
            self.console_level = logging.DEBUG

        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColoredFormatter())
        console_handler.setLevel(self.console_level)
        root_logger.addHandler(console_handler)

        logs_directory = settings.storage.logs_directory
        ensure_directory(logs_directory)
        max_bytes = settings.storage.max_log_size_mb * 1024 * 1024

        file_handler = logging.handlers.RotatingFileHandler(
            logs_directory / "app.log",
            maxBytes=max_bytes,
            backupCount=settings.storage.max_log_files
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            logs_directory / "error.log",
            maxBytes=max_bytes,
            backupCount=settings.storage.max_log_files
        )
        error_handler.setFormatter(JSONFormatter())
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

        self._configured = True

    def get_workflow_logger(self, run_id: str, component: str = "workflow") -> WorkflowLogger:
        """Get or create the logger of a run"""
        key = f"{component}.{run_id}"

        if key not in self.workflow_loggers:
            self.workflow_loggers[key] = WorkflowLogger(run_id=run_id, component=component)

        return self.workflow_loggers[key]

    def cleanup_workflow_logger(self, run_id: str, component: str = "workflow"):
        key = f"{component}.{run_id}"
        logger = self.workflow_loggers.pop(key, None)
        if logger:
            logger.close()

    def shutdown(self):
        for key in list(self.workflow_loggers):
            component, run_id = key.split('.', 1)
            self.cleanup_workflow_logger(run_id, component)

# Global log manager instance
log_manager = LogManager()

def get_logger(name: str) -> logging.Logger:
    """Get logger with proper configuration"""
    return logging.getLogger(name)

def get_workflow_logger(run_id: str, component: str = "workflow") -> WorkflowLogger:
    return log_manager.get_workflow_logger(run_id, component)

__all__ = [
    'LogCategory', 'LogEntry', 'JSONFormatter', 'ColoredFormatter',
    'WorkflowLogger', 'LogManager',
    'get_logger', 'get_workflow_logger',
    'log_manager'
]
