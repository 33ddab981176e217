"""
Shared constants for Watermark Worker
"""

from enum import Enum


class JobType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class PipelineState(str, Enum):
    PROBING = "probing"
    RENDERING = "rendering"
    SPAWNED = "spawned"
    STREAMING = "streaming"
    JOINED = "joined"
    SUCCESS = "success"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    PROBE_FAILED = "probe_failed"
    TRANSCODE_FAILED = "transcode_failed"
    SINK_FAILED = "sink_failed"


# Progress checkpoints reported to the job queue
PROGRESS_STARTED = 10
PROGRESS_PIPELINE_STARTED = 25
PROGRESS_IMAGE_COMPOSITED = 50
PROGRESS_IMAGE_UPLOADED = 75
PROGRESS_VIDEO_JOINED = 90
PROGRESS_DONE = 100

IMAGE_CONTENT_TYPE = "image/png"
VIDEO_CONTENT_TYPE = "video/mp4"

# Row-major 3x3 grid:
#   0 1 2
#   3 4 5
#   6 7 8
# No two cells of a pattern share an edge.
ZONE_PATTERNS = (
    (0, 4, 8),
    (2, 4, 6),
    (0, 2, 7),
    (1, 6, 8),
    (0, 5, 6),
    (2, 3, 8),
)

ZONE_PADDING = 30

OVERLAY_FILENAME = "overlay.png"
SCRATCH_PREFIX = "watermark-"

# Filter graph and container flags for stdout streaming
OVERLAY_FILTER = "[0:v][1:v]overlay=0:0:format=auto"
FRAGMENTED_MOVFLAGS = "frag_keyframe+empty_moov+default_base_moof"
