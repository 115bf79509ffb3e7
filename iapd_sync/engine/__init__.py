"""Engine components: throttle → retry → fetch → resume → diff → merge."""

from .diff import BaselineReader, BaselineSnapshot, ChangeKind, DiffResult, IncrementalDiffEngine
from .downloader import BrochureDownloader, DownloadOutcome
from .errors import ErrorCategory, PipelineError
from .fetcher import FetchRequest, FetchResponse, Fetcher
from .merge import MasterMerger, MergeResult
from .rate_limiter import RateLimiter
from .resume import ResumeLocator, ResumePoint, ResumeStatus
from .retry import RetryExecutor, RetryPolicy
from .stats import RunStatistics

__all__ = [
    "BaselineReader",
    "BaselineSnapshot",
    "BrochureDownloader",
    "ChangeKind",
    "DiffResult",
    "DownloadOutcome",
    "ErrorCategory",
    "FetchRequest",
    "FetchResponse",
    "Fetcher",
    "IncrementalDiffEngine",
    "MasterMerger",
    "MergeResult",
    "PipelineError",
    "RateLimiter",
    "ResumeLocator",
    "ResumePoint",
    "ResumeStatus",
    "RetryExecutor",
    "RetryPolicy",
    "RunStatistics",
]
