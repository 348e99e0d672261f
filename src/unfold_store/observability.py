"""Logging setup and in-process metrics for the Unfold note store."""
import logging
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Tuple, Union

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "unfold-store.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Result keys a tool can set on its operation record that feed store counters
STORE_COUNTERS = ("bytes_written", "attachments_removed", "nodes_removed")


def configure_logging(
    log_dir: Union[str, Path],
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Attach a rotating ``unfold-store.log`` handler to the package logger.

    Calling it again replaces the file handler instead of stacking a second
    one, so a restarted server inside one process logs each line once.

    Returns:
        The log directory.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("unfold_store")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for handler in list(package_logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            package_logger.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(
        log_path / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    has_console = any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )
    if console and not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    return log_path


@dataclass
class ToolStats:
    """Call counts and timing for one tool."""
    calls: int = 0
    errors: int = 0
    total_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class StoreMetrics:
    """Per-tool call statistics plus running totals of store side effects.

    Tool bodies run on worker threads, so all access goes through one lock.
    """

    def __init__(self):
        self._lock = Lock()
        self._tools: Dict[str, ToolStats] = {}
        self._counters: Counter = Counter()
        self._started = datetime.now(timezone.utc)

    def record(self, tool: str, duration_ms: float, ok: bool) -> None:
        with self._lock:
            stats = self._tools.setdefault(tool, ToolStats())
            stats.calls += 1
            stats.total_ms += duration_ms
            if not ok:
                stats.errors += 1

    def add(self, counter: str, amount: int) -> None:
        with self._lock:
            self._counters[counter] += amount

    def snapshot(self) -> Tuple[Dict[str, ToolStats], Dict[str, int]]:
        """Copies of the tool stats and counters, safe to read without the lock."""
        with self._lock:
            tools = {name: replace(stats) for name, stats in self._tools.items()}
            return tools, dict(self._counters)

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._started).total_seconds()

    def reset(self) -> None:
        with self._lock:
            self._tools.clear()
            self._counters.clear()
            self._started = datetime.now(timezone.utc)


metrics = StoreMetrics()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a tool call, log it, and fold its outcome into ``metrics``.

    The yielded dict is the operation record. Set ``error`` on it when the
    tool reports a failure as text instead of raising, and set any of the
    ``STORE_COUNTERS`` keys to count what a successful call changed::

        with timed_operation("delete_node", node_id=node_id) as op:
            op["nodes_removed"] = repo.delete_node(node_id)
    """
    correlation_id = uuid.uuid4().hex[:8]
    op: Dict[str, Any] = {"correlation_id": correlation_id}
    started = time.perf_counter()
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    raised = None
    try:
        yield op
    except Exception as e:
        raised = e
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        error = raised if raised is not None else op.get("error")
        metrics.record(operation, duration_ms, ok=error is None)
        if error is None:
            for counter in STORE_COUNTERS:
                if op.get(counter):
                    metrics.add(counter, int(op[counter]))
            logger.debug(f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [OK]")
        else:
            logger.debug(
                f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [ERROR: {error}]"
            )
