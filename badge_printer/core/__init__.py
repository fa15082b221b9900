"""
Core utilities for Badge Printer.

This package groups non-Flask helpers used across the app:
- config: paths, JSON load/save, queue settings
- errors: the QueueError taxonomy shared by the queue and the API
- logging: Request ID aware logging filters/formatters and root logger config
- models: the Job record and its status enums
- db: SQLite-backed JobStore

Exports are explicit to keep static analyzers (e.g., Pyright) happy.
"""

from .config import (
    QueueSettings,
    default_config_path,
    default_data_path,
    get_config_path,
    get_db_path,
    load_config,
    save_config,
)
from .db import SCHEMA_VERSION, JobStore
from .errors import (
    CapacityExceeded,
    DuplicateUidError,
    InvalidState,
    NotFound,
    PrintError,
    PrinterConnectionError,
    QueueError,
    RenderError,
    RetryLimitExceeded,
    UnknownPreset,
    ValidationError,
)
from .logging import (
    JsonFormatter,
    RequestIdFilter,
    configure_logging,
    job_context,
)
from .models import InterventionAction, Job, JobStatus

__all__ = [
    # config
    "QueueSettings",
    "default_config_path",
    "default_data_path",
    "get_config_path",
    "get_db_path",
    "load_config",
    "save_config",
    # db
    "SCHEMA_VERSION",
    "JobStore",
    # errors
    "CapacityExceeded",
    "DuplicateUidError",
    "InvalidState",
    "NotFound",
    "PrintError",
    "PrinterConnectionError",
    "QueueError",
    "RenderError",
    "RetryLimitExceeded",
    "UnknownPreset",
    "ValidationError",
    # logging
    "configure_logging",
    "RequestIdFilter",
    "JsonFormatter",
    "job_context",
    # models
    "InterventionAction",
    "Job",
    "JobStatus",
]
