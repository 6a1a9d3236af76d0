"""Operation results returned by the Assignment Controller."""

from typing import List, Optional

from pydantic import BaseModel


class CleanupResult(BaseModel):
    """
    Outcome of a best-effort cleanup (clearing vacated spaces).

    Cleanup never raises: remote failures are reported here as warnings
    so they cannot block the primary operation.
    """
    cleared: List[str] = []
    failed: List[str] = []
    warnings: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.failed


class BatchPushResult(BaseModel):
    """All-or-nothing outcome of one batch upsert."""
    success: bool
    synced_count: int = 0
    entity_ids: List[str] = []
    error: Optional[str] = None
    cleanup: Optional[CleanupResult] = None   # Spaces vacated by the batch


class LoadListResult(BaseModel):
    """Outcome of switching the active list."""
    list_id: str
    entity_count: int
    cleanup: CleanupResult
    push: Optional[BatchPushResult] = None
