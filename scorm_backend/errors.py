"""Failure taxonomy for the conversion worker.

Every error carries a ``public_message`` that is safe to put in a response
body. The exception text itself may hold diagnostic detail (tool names, exit
codes, paths) and is meant for logs only.
"""
from __future__ import annotations


class WorkerError(Exception):
    public_message = "Conversion failed"

    def __init__(self, message: str | None = None, *, public_message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        if public_message:
            self.public_message = public_message


class AuthorizationError(WorkerError):
    public_message = "Unauthorized"


class ValidationError(WorkerError):
    public_message = "Invalid request"


class UploadTooLargeError(ValidationError):
    public_message = "Upload too large"


class PipelineError(WorkerError):
    """Base for failures raised while a job is running."""


class ResourceError(PipelineError):
    public_message = "Could not prepare a workspace"


class StageExecutionError(PipelineError):
    public_message = "External conversion tool failed"

    def __init__(self, tool: str, exit_info: str, stderr_excerpt: str = "") -> None:
        super().__init__(f"{tool} failed: {exit_info}")
        self.tool = tool
        self.exit_info = exit_info
        self.stderr_excerpt = stderr_excerpt


class ConversionError(PipelineError):
    public_message = "Conversion produced no usable output. Check input file."


class EmptySequenceError(PipelineError):
    public_message = "No slides produced. Check input file."
