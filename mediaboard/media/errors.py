"""
Media pipeline exception classes.

Fatal configuration errors (ToolchainUnavailable, NoUsableEncoder) and input
validation errors surface to the caller. Everything else is caught at the
artifact boundary that raised it.
"""


class MediaPipelineError(Exception):
    """Base exception for media pipeline operations."""

    pass


class ToolchainUnavailable(MediaPipelineError):
    """Exception raised when an external binary cannot be executed at all."""

    pass


class NoUsableEncoder(MediaPipelineError):
    """Exception raised when no encoder qualifies for a codec family."""

    pass


class FFmpegError(MediaPipelineError):
    """Exception raised when a child process exits unsuccessfully."""

    pass


class FFmpegTimeoutError(FFmpegError):
    """Exception raised when a child process exceeds the configured timeout."""

    pass


class DimensionUnavailable(MediaPipelineError):
    """Exception raised when width or height cannot be determined."""

    pass


class InvalidUpload(MediaPipelineError):
    """Exception raised when an upload request is missing or malformed."""

    pass


class UnsupportedMediaType(InvalidUpload):
    """Exception raised when the extension resolves to the 'other' class."""

    pass


# Errors that must abort a pipeline rather than degrade an artifact
FATAL_ERRORS = (ToolchainUnavailable, NoUsableEncoder)
