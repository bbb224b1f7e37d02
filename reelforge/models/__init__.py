from .job import Job, JobStatus, TERMINAL_STATUSES
from .api_rotation import ApiRotationState

__all__ = [
    "Job",
    "JobStatus",
    "TERMINAL_STATUSES",
    "ApiRotationState",
]
