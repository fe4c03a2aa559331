"""
Ingestion Layer - Episodes into the Graph.

Pipeline stages and the background task queue that runs them.
"""

from src.ingestion.pipeline import IngestionError, IngestionPipeline, IngestionReport
from src.ingestion.queue import IngestionQueue, IngestionTask, TaskState, TaskStatus

__all__ = [
    "IngestionPipeline",
    "IngestionReport",
    "IngestionError",
    "IngestionQueue",
    "IngestionTask",
    "TaskState",
    "TaskStatus",
]
