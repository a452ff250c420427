"""Task executors: the interface the orchestrator drives and a streaming implementation."""

from taskdeck.executor.base import ExecutorFactory, ExecutorRequest, TaskBinding, TaskExecutor
from taskdeck.executor.streaming import StreamingTaskExecutor, resolve_provider

__all__ = [
    "ExecutorFactory",
    "ExecutorRequest",
    "TaskBinding",
    "TaskExecutor",
    "StreamingTaskExecutor",
    "resolve_provider",
]
