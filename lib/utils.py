"""
Common utilities for OSD cluster lifecycle automation.
"""

import json
import logging
import os
import stat
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from lib.exceptions import OperationCancelledError


class Phase(Enum):
    """Cluster lifecycle phases for state tracking."""

    INIT = "init"
    CREATED = "created"
    ADDONS_INSTALLED = "addons_installed"
    VERIFIED = "verified"
    UPGRADED = "upgraded"
    DELETED = "deleted"
    FAILED = "failed"


def _utc_timestamp() -> str:
    """Return an ISO-8601 timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()


class CancellationToken:
    """Cancellation signal shared between a caller and retry/poll waits."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Wait up to ``seconds``; raise as soon as cancellation is requested."""
        if self._event.wait(timeout=seconds):
            raise OperationCancelledError("Operation cancelled while waiting")


class StateManager:
    """Persists lifecycle state (cluster id, resolved region, steps) between runs."""

    def __init__(self, state_file: str = ".state/osd-lifecycle-state.json"):
        self.state_file = state_file
        self.state = self._load_state()

    def _load_state(self) -> Dict[str, Any]:
        """Load state from file or create new state."""
        if os.path.exists(self.state_file):
            try:
                with open(self.state_file, "r", encoding="utf-8") as f:
                    return json.load(f)
            except json.JSONDecodeError as e:
                logging.warning("Corrupted state file %s: %s, starting fresh", self.state_file, e)
            except OSError as e:
                logging.error("Failed to read state file %s: %s", self.state_file, e)

        state = self._new_state()
        self._write_state(state)
        return state

    def _new_state(self) -> Dict[str, Any]:
        """Return a fresh state structure."""
        return {
            "version": "1.0",
            "created_at": _utc_timestamp(),
            "current_phase": Phase.INIT.value,
            "completed_steps": [],
            "config": {},
            "errors": [],
            "last_updated": _utc_timestamp(),
        }

    def _ensure_state_dir(self) -> None:
        state_dir = os.path.dirname(self.state_file)
        if state_dir:
            os.makedirs(state_dir, exist_ok=True)

    def _write_state(self, state: Dict[str, Any]) -> None:
        """Write the provided state dict to disk without modifying it."""
        self._ensure_state_dir()
        # Owner read/write only
        fd = os.open(self.state_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
        except Exception:
            os.close(fd)
            raise

    def save_state(self) -> None:
        """Persist current state to disk."""
        self.state["last_updated"] = _utc_timestamp()
        self._write_state(self.state)

    def set_phase(self, phase: Phase) -> None:
        """Update current phase."""
        self.state["current_phase"] = phase.value
        self.save_state()

    def mark_step_completed(self, step_name: str) -> None:
        """Mark a step as completed."""
        if not self.is_step_completed(step_name):
            self.state["completed_steps"].append({"name": step_name, "timestamp": _utc_timestamp()})
            self.save_state()

    def is_step_completed(self, step_name: str) -> bool:
        """Check if a step was already completed."""
        return any(s["name"] == step_name for s in self.state["completed_steps"])

    def set_config(self, key: str, value: Any) -> None:
        """Store configuration value."""
        self.state["config"][key] = value
        self.save_state()

    def get_config(self, key: str, default: Any = None) -> Any:
        """Retrieve configuration value."""
        return self.state["config"].get(key, default)

    def add_error(self, error: str, phase: Optional[str] = None) -> None:
        """Record an error."""
        self.state["errors"].append(
            {
                "error": error,
                "phase": phase or self.state["current_phase"],
                "timestamp": _utc_timestamp(),
            }
        )
        self.save_state()

    def reset(self) -> None:
        """Reset state to initial."""
        self.state = self._new_state()
        self.save_state()

    def get_current_phase(self) -> Phase:
        """Get current phase as enum."""
        raw_phase = self.state.get("current_phase", Phase.INIT.value)
        try:
            return Phase(raw_phase)
        except ValueError:
            logging.warning(
                "Unknown phase '%s' in state file %s. Falling back to INIT.",
                raw_phase,
                self.state_file,
            )
            self.state["current_phase"] = Phase.INIT.value
            self.save_state()
            return Phase.INIT


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record)


def setup_logging(verbose: bool = False, log_format: str = "text") -> logging.Logger:
    """
    Configure root logging.

    Args:
        verbose: Enable debug logging
        log_format: 'text' or 'json'
    """
    level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root_logger.addHandler(handler)

    return logging.getLogger("osd_lifecycle")


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def confirm_action(prompt: str, default: bool = False) -> bool:
    """
    Prompt user for confirmation.

    Args:
        prompt: Question to ask
        default: Default answer if user just presses enter

    Returns:
        True if confirmed, False otherwise
    """
    suffix = " [Y/n]: " if default else " [y/N]: "

    while True:
        response = input(prompt + suffix).strip().lower()

        if not response:
            return default
        elif response in ("y", "yes"):
            return True
        elif response in ("n", "no"):
            return False
        else:
            print("Please answer 'y' or 'n'")
