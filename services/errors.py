"""Error taxonomy for the brand intelligence pipeline.

Connector and agent failures are caught close to where they happen and turned
into values (a failed SourceResult, an AgentReport with ``error`` set). Only
InsufficientSignal ends a run.
"""
from typing import Optional


class BrandIntelError(Exception):
    pass


class SourceUnavailable(BrandIntelError):
    def __init__(self, source_kind: str, cause: str):
        super().__init__(f"{source_kind} unavailable: {cause}")
        self.source_kind = source_kind
        self.cause = cause


class RateLimited(SourceUnavailable):
    def __init__(self, source_kind: str, cause: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(source_kind, cause)
        self.retry_after = retry_after


class InsufficientSignal(BrandIntelError):
    def __init__(self, handle: str, failures: Optional[dict] = None):
        super().__init__(f"No usable sources for '{handle}'")
        self.handle = handle
        self.failures = failures or {}


class GenerationError(BrandIntelError):
    pass


class RunCancelled(BrandIntelError):
    pass


class InvalidTransition(BrandIntelError):
    pass
