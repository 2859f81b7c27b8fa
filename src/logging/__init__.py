"""Structured logging for the content intelligence pipeline."""
from src.logging.models import LogLevel, LogComponent, LogEntry
from src.logging.agent_logger import AgentLogger
from src.logging.pipeline_run_logger import PipelineRunLogger

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "AgentLogger",
    "PipelineRunLogger",
]
