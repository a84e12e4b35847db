"""
Logging for the research workflow service.

Every module logs through structlog with snake_case event names
(``transition_applied``, ``form_field_quarantined``, ...). Each HTTP
request carries ``request_id``, ``session_id`` and ``app_state`` in its
context, so one research run can be followed across requests.

Each process run writes ``logs/research_<timestamp>.log``; older run
files beyond ``runs_to_keep`` are removed at startup. Debug mode renders
colored console lines, otherwise one JSON object per line.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

import structlog
from structlog.typing import Processor

from src.core.config import settings

LOG_FILE_PREFIX = "research_"
DEFAULT_LOGS_DIR = Path("logs")


def _run_logs(logs_dir: Path) -> List[Path]:
    """Run log files, newest first."""
    return sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )


def _cull_old_logs(logs_dir: Path, keep: int) -> None:
    for stale in _run_logs(logs_dir)[max(keep, 0):]:
        try:
            stale.unlink()
        except OSError:
            pass  # still held open by another process


def _renderer_chain() -> List[Processor]:
    chain: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]
    if settings.debug:
        return chain + [structlog.dev.ConsoleRenderer(colors=True)]
    return chain + [
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]


def _install_handlers(log_file: Path) -> None:
    root = logging.getLogger()
    # Replace, never stack: tests and reloads configure more than once
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)
    root.setLevel(logging.INFO)

    plain = logging.Formatter("%(message)s")
    for handler in (logging.StreamHandler(), logging.FileHandler(log_file, mode="w")):
        handler.setFormatter(plain)
        root.addHandler(handler)


def configure_logging(
    runs_to_keep: int = 5, logs_dir: Optional[Path] = None
) -> Path:
    """
    Set up structlog and the run log file.

    Called once when the app module is imported; calling it again swaps
    the handlers rather than adding more.

    Args:
        runs_to_keep: Run log files retained, this run included
        logs_dir: Where run logs go (default: ./logs)

    Returns:
        Path of this run's log file
    """
    logs_dir = logs_dir or DEFAULT_LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)
    _cull_old_logs(logs_dir, keep=runs_to_keep - 1)

    log_file = logs_dir / f"{LOG_FILE_PREFIX}{datetime.now():%Y%m%d_%H%M%S}.log"
    _install_handlers(log_file)

    structlog.configure(
        processors=_renderer_chain(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return log_file


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Add key/values to every log line emitted in the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def bind_request_context(request_id: str, machine: Any = None) -> None:
    """
    Bind the per-request tracing keys.

    ``machine`` is the app's AppStateMachine when one is installed; its
    current session and state are bound next to the request id.
    """
    context = {"request_id": request_id}
    if machine is not None:
        context["session_id"] = machine.current_session_id
        context["app_state"] = machine.current_state.value
    bind_context(**context)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
