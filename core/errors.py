"""
Error taxonomy for Watermark Worker
"""

from typing import Optional


class WatermarkError(Exception):
    """Base class for all worker errors."""


class ConfigError(WatermarkError):
    pass


class JobValidationError(WatermarkError):
    pass


class UnsupportedJobType(WatermarkError):
    def __init__(self, job_type):
        self.job_type = job_type
        super().__init__(f"Unsupported job type: {job_type!r}")


class ProbeError(WatermarkError):
    """ffprobe failed or produced an unusable report."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class DecodeError(WatermarkError):
    pass


class TranscodeFailed(WatermarkError):
    def __init__(self, exit_code: Optional[int], diagnostics: str = ""):
        self.exit_code = exit_code
        self.diagnostics = diagnostics
        msg = f"Transcoder exited with code {exit_code}"
        if diagnostics.strip():
            msg += f": {diagnostics.strip().splitlines()[-1]}"
        super().__init__(msg)


class SinkFailed(WatermarkError):
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Streaming upload failed: {cause}")


class CallbackFailed(WatermarkError):
    def __init__(self, status_code: Optional[int], cause: Optional[BaseException] = None):
        self.status_code = status_code
        self.cause = cause
        if status_code is not None:
            super().__init__(f"Callback endpoint responded with HTTP {status_code}")
        else:
            super().__init__(f"Callback request failed: {cause}")
