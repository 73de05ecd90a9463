"""Workflow backend payload schemas."""

from .workflow import BackendResponse, Region, WorkflowRequest, parse_backend_response

__all__ = [
    "BackendResponse",
    "Region",
    "WorkflowRequest",
    "parse_backend_response",
]
