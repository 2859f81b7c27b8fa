"""Pipeline run tracking with structured stage-level timing.

``PipelineRunLogger`` wraps an ``AgentLogger`` and provides a
higher-level API for tracking the stages of a single trigger run:

1. Instantiate with a ``run_id`` and the logger -- this sets the logger context.
2. Call ``start_stage()`` / ``end_stage()`` around each stage.
3. Call ``finish()`` when the run is done -- returns a summary dict.
4. Call ``get_summary_text()`` for a human-readable summary.
"""

from typing import Any, Dict, List, Optional

from src.logging.agent_logger import AgentLogger
from src.logging.models import LogComponent
from src.utils import utc_now


class PipelineRunLogger:
    """Track an entire trigger run with per-stage timing and status.

    Parameters:
        run_id: Unique identifier for this run.
        logger: Structured logger the stage events are written to.
    """

    def __init__(self, run_id: str, logger: AgentLogger) -> None:
        self.run_id = run_id
        self.logger = logger
        self.logger.set_context(run_id=run_id)

        self.start_time = utc_now()
        self.stages: List[Dict[str, Any]] = []
        self.current_stage: Optional[str] = None

    async def start_stage(
        self, stage: str, component: LogComponent = LogComponent.ORCHESTRATOR
    ) -> None:
        """Mark the beginning of a stage (e.g. ``"ingest"``).

        Stage events are tagged with ``component`` so they can be filtered
        alongside that engine's own entries.
        """
        self.current_stage = stage
        self.stages.append(
            {
                "stage": stage,
                "component": component,
                "start": utc_now(),
                "end": None,
                "status": "running",
                "duration_ms": None,
                "data": None,
            }
        )

        await self.logger.info(
            component,
            f"Stage started: {stage}",
        )

    async def end_stage(
        self,
        status: str = "success",
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Mark the end of the current stage.

        Args:
            status: Outcome string (``"success"``, ``"failed"``, ``"timeout"``).
            data: Optional payload with stage-specific metrics.
        """
        if not self.stages:
            return

        stage = self.stages[-1]
        stage["end"] = utc_now()
        stage["status"] = status
        stage["duration_ms"] = int(
            (stage["end"] - stage["start"]).total_seconds() * 1000
        )
        stage["data"] = data

        await self.logger.info(
            stage["component"],
            f"Stage completed: {self.current_stage} ({status})",
            data=data,
            duration_ms=stage["duration_ms"],
        )
        self.current_stage = None

    async def finish(self, status: str = "success") -> Dict[str, Any]:
        """Finish the run and return a summary dict.

        Also clears the run context on the logger.

        Returns:
            Dictionary containing run_id, status, timings, and per-stage data.
        """
        end_time = utc_now()
        total_duration_ms = int(
            (end_time - self.start_time).total_seconds() * 1000
        )

        # Serialise stage data for JSON compatibility
        serialisable_stages = []
        for s in self.stages:
            serialisable_stages.append(
                {
                    "stage": s["stage"],
                    "start": s["start"].isoformat() if s["start"] else None,
                    "end": s["end"].isoformat() if s["end"] else None,
                    "status": s["status"],
                    "duration_ms": s["duration_ms"],
                    "data": s["data"],
                }
            )

        summary: Dict[str, Any] = {
            "run_id": self.run_id,
            "status": status,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "total_duration_ms": total_duration_ms,
            "stages": serialisable_stages,
        }

        await self.logger.info(
            LogComponent.ORCHESTRATOR,
            f"Pipeline run completed: {status}",
            data=summary,
            duration_ms=total_duration_ms,
        )

        self.logger.clear_context()

        return summary

    def get_summary_text(self) -> str:
        """Return a human-readable summary of the run."""
        lines: List[str] = [
            f"Pipeline Run: {self.run_id}",
            "",
        ]

        for stage in self.stages:
            status_marker = (
                "[OK]" if stage["status"] == "success" else "[FAIL]"
            )
            duration = stage.get("duration_ms") or 0
            lines.append(f"{status_marker} {stage['stage']}: {duration}ms")

        total = sum(s.get("duration_ms") or 0 for s in self.stages)
        lines.append(f"\nTotal: {total}ms")

        return "\n".join(lines)
