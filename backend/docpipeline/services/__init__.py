"""
Pipeline Services
═════════════════

  processing.py  DocumentProcessor: validation → extraction → chunking
  progress.py    Progress sinks, fan-out channel and the latest-event store
  status.py      Elapsed-time progress estimator for polling clients
  jobs.py        Background job: download, process, persist
"""

from docpipeline.services.processing import DocumentProcessor
from docpipeline.services.progress import (
    CallbackSink,
    LoggingSink,
    ProgressChannel,
    ProgressSink,
    ProgressStore,
    StoreSink,
)
from docpipeline.services.status import ProgressEstimator

__all__ = [
    "DocumentProcessor",
    "CallbackSink",
    "LoggingSink",
    "ProgressChannel",
    "ProgressSink",
    "ProgressStore",
    "StoreSink",
    "ProgressEstimator",
]
