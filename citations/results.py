"""
Structured result returned by every citation hygiene operation.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class BatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    started: bool = True

    @property
    def success(self) -> bool:
        """False only when the run never started or every processed item failed."""
        if not self.started:
            return False
        return not (self.processed and self.failed == self.processed)

    def record(self, outcome: str, **detail):
        self.processed += 1
        if outcome == 'succeeded':
            self.succeeded += 1
        elif outcome == 'failed':
            self.failed += 1
        elif outcome == 'skipped':
            self.skipped += 1
        else:
            raise ValueError(f"Unknown outcome: {outcome}")
        self.details.append({'outcome': outcome, **detail})

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'processed': self.processed,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped': self.skipped,
            'details': self.details,
        }
        data.update(self.extra)
        return data
