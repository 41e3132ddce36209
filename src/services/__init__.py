"""Services package exports."""

from src.services.auth_workflow import AuthWorkflow
from src.services.logging_service import configure_logging, get_logger

__all__ = [
    "AuthWorkflow",
    "configure_logging",
    "get_logger",
]
