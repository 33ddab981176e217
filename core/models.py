"""
Data model: dimensions, watermark text, jobs and pipeline outcomes
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from core.constants import OutcomeKind, PipelineState
from core.errors import JobValidationError, ProbeError, SinkFailed, TranscodeFailed


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int

    def __post_init__(self):
        for name in ("width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")

    @property
    def size(self):
        return (self.width, self.height)


@dataclass(frozen=True)
class WatermarkSpec:
    text: str

    def __post_init__(self):
        if not isinstance(self.text, str) or not self.text.strip():
            raise ValueError("Watermark text must be a non-empty string")

    @property
    def lines(self) -> List[str]:
        return self.text.splitlines() or [self.text]


@dataclass
class Interaction:
    application_id: str
    token: str
    message_id: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "applicationId": self.application_id,
            "token": self.token,
            "messageId": self.message_id,
        }


@dataclass
class Job:
    job_id: str
    container: str
    type: str
    watermark_text: str
    response_url: str
    filename: str
    interaction: Interaction

    REQUIRED = ("jobId", "container", "type", "watermarkText", "responseUrl", "filename", "interaction")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Build a job from its camelCase wire form."""
        if not isinstance(data, dict):
            raise JobValidationError("Job record must be a JSON object")
        missing = [k for k in cls.REQUIRED if data.get(k) in (None, "")]
        if missing:
            raise JobValidationError(f"Job record missing fields: {', '.join(missing)}")
        inter = data["interaction"]
        if not isinstance(inter, dict):
            raise JobValidationError("interaction must be an object")
        inter_missing = [k for k in ("applicationId", "token", "messageId") if not inter.get(k)]
        if inter_missing:
            raise JobValidationError(f"interaction missing fields: {', '.join(inter_missing)}")
        return cls(
            job_id=str(data["jobId"]),
            container=str(data["container"]),
            type=str(data["type"]),
            watermark_text=str(data["watermarkText"]),
            response_url=str(data["responseUrl"]),
            filename=str(data["filename"]),
            interaction=Interaction(
                application_id=str(inter["applicationId"]),
                token=str(inter["token"]),
                message_id=str(inter["messageId"]),
            ),
        )

    def callback_payload(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "interaction": self.interaction.to_dict(),
            "filename": self.filename,
        }


@dataclass
class PipelineOutcome:
    kind: OutcomeKind
    exit_code: Optional[int] = None
    diagnostics: str = ""
    error: Optional[BaseException] = None
    states: List[PipelineState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def raise_for_outcome(self) -> None:
        if self.kind is OutcomeKind.SUCCESS:
            return
        if self.kind is OutcomeKind.PROBE_FAILED:
            if isinstance(self.error, ProbeError):
                raise self.error
            raise ProbeError(str(self.error))
        if self.kind is OutcomeKind.TRANSCODE_FAILED:
            raise TranscodeFailed(self.exit_code, self.diagnostics)
        raise SinkFailed(self.error)


class ByteStream(Protocol):
    """Live byte stream handed to a sink (e.g. transcoder stdout)."""

    async def read(self, n: int = -1) -> bytes: ...

    def at_eof(self) -> bool: ...


# Accepts a live stream and resolves once the bytes are durably stored.
Sink = Callable[[ByteStream], Awaitable[None]]
