"""Structured run logger with file and optional Supabase outputs.

Provides the ``AgentLogger`` class that dispatches structured log entries
to local JSON-lines files (via ``aiofiles``) and an optional Supabase
table.  A lightweight in-memory ring buffer allows fast ``get_recent()``
queries without hitting the database.

The logger is created by the process entry point and handed to the
components that need it; there is no module-level singleton.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import aiofiles

from src.logging.models import LogComponent, LogEntry, LogLevel
from src.utils import utc_now

# Mirror every structured entry to the stdlib logger so console output
# follows the process-wide logging configuration.
_stdlib_logger = logging.getLogger("ContentIntelligence")


class AgentLogger:
    """Central structured logger for pipeline runs.

    Parameters:
        log_dir: Directory for log files (created if missing).
        db: Optional :class:`~src.database.SupabaseDB` with a
            ``save_agent_log()`` method.
        min_level: Minimum level for Supabase writes.
        max_recent: Size of the in-memory ring buffer.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        db: Any = None,
        min_level: LogLevel = LogLevel.INFO,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.db = db
        self.min_level = min_level

        # Current context (set per pipeline run)
        self._run_id: Optional[str] = None
        self._topic: Optional[str] = None

        # Log file paths
        self._main_log = self.log_dir / "pipeline.log"
        self._error_log = self.log_dir / "errors.log"
        self._debug_log = self.log_dir / "debug.log"

        # In-memory ring buffer for quick access
        self._recent_logs: List[LogEntry] = []
        self._max_recent = max_recent

        # Track pending async tasks to prevent garbage collection
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    def set_context(
        self, run_id: Optional[str] = None, topic: Optional[str] = None
    ) -> None:
        """Set context for subsequent log entries."""
        if run_id is not None:
            self._run_id = run_id
        if topic is not None:
            self._topic = topic

    def clear_topic(self) -> None:
        """Drop the topic context, keeping the run id."""
        self._topic = None

    def clear_context(self) -> None:
        """Clear logging context."""
        self._run_id = None
        self._topic = None

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> LogEntry:
        """Log a structured message.

        Writes to the JSON files always and to Supabase when connected and
        the severity threshold is met.

        Returns:
            The recorded entry.
        """
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            run_id=self._run_id,
            topic=self._topic,
            data=data or {},
            duration_ms=duration_ms,
        )

        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_message = str(error)

        # Append to ring buffer
        self._recent_logs.append(entry)
        if len(self._recent_logs) > self._max_recent:
            self._recent_logs.pop(0)

        _stdlib_logger.log(level.value, "[%s] %s", component.value, message)

        # Write to file (awaited so file I/O completes before return)
        await self._write_to_file(entry)

        # Write to Supabase (fire-and-forget but tracked)
        if self.db is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_supabase(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        return entry

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def debug(
        self, component: LogComponent, message: str, **kwargs: Any
    ) -> LogEntry:
        """Log at DEBUG level."""
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(
        self, component: LogComponent, message: str, **kwargs: Any
    ) -> LogEntry:
        """Log at INFO level."""
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(
        self, component: LogComponent, message: str, **kwargs: Any
    ) -> LogEntry:
        """Log at WARNING level."""
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(
        self, component: LogComponent, message: str, **kwargs: Any
    ) -> LogEntry:
        """Log at ERROR level."""
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        run_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Return recent logs from the in-memory ring buffer.

        Filters are applied in-memory (fast, no I/O).
        """
        logs = self._recent_logs.copy()

        if level is not None:
            logs = [entry for entry in logs if entry.level == level]
        if component is not None:
            logs = [entry for entry in logs if entry.component == component]
        if run_id is not None:
            logs = [entry for entry in logs if entry.run_id == run_id]

        return logs[-limit:]

    # ------------------------------------------------------------------
    # Flush (call before shutdown)
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait for all pending Supabase writes.

        Call this before application shutdown to ensure every log entry
        has been written.
        """
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Private output methods
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        """Write log entry to JSON log files using async I/O.

        - ``pipeline.log`` -- all entries
        - ``errors.log``   -- ERROR and CRITICAL only
        - ``debug.log``    -- DEBUG only
        """
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._main_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

        if entry.level == LogLevel.DEBUG:
            async with aiofiles.open(self._debug_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _write_to_supabase(self, entry: LogEntry) -> None:
        """Write log entry to the ``agent_logs`` Supabase table."""
        try:
            await self.db.save_agent_log(entry.to_dict())
        except Exception as exc:
            # Last-resort fallback: print to stderr so we never lose
            # visibility into a Supabase write failure.
            print(
                f"[LOGGING] Failed to write to Supabase: {exc}",
                file=sys.stderr,
            )
