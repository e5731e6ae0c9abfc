import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from finsim.config import REGISTRY_TOLERANCE, SNAPSHOT_HISTORY
from finsim.consistency import MetricRegistry
from finsim.models import Snapshot


@dataclass
class SessionContext:
    """
    Holds all state gathered during a single analysis session.
    Carries the metric registry and the most recent snapshots; once
    ``snapshot_history`` is reached the oldest snapshot is dropped.
    """
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    registry_tolerance: float = REGISTRY_TOLERANCE
    snapshot_history: int = SNAPSHOT_HISTORY

    registry: MetricRegistry = field(init=False)
    snapshots: Deque[Snapshot] = field(init=False)

    def __post_init__(self):
        self.registry = MetricRegistry(self.session_id, self.registry_tolerance)
        self.snapshots = deque(maxlen=self.snapshot_history)

    def record_snapshot(self, snapshot: Snapshot) -> None:
        self.snapshots.append(snapshot)

    @property
    def latest_snapshot(self) -> Optional[Snapshot]:
        """Most recent snapshot, or ``None`` before the first analysis."""
        return self.snapshots[-1] if self.snapshots else None

    def reset(self):
        """Drop registered metrics and snapshots; keep the session id."""
        self.registry.clear()
        self.snapshots.clear()
