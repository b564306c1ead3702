# Models module
from clipsmith.models.job import Job, JobStatus, JobStep, SourceKind

__all__ = ["Job", "JobStatus", "JobStep", "SourceKind"]
