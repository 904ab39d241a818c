from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional


class WatermarkTracker:
    """Per-sensor record of the newest timestamp already broadcast.

    Only a strictly newer timestamp moves a watermark, so a reading whose
    timestamp ties the current mark is never broadcast twice.
    """

    def __init__(self) -> None:
        self._marks: Dict[str, datetime] = {}

    def get(self, sensor_id: str) -> Optional[datetime]:
        return self._marks.get(sensor_id)

    def advance(self, sensor_id: str, timestamp: datetime) -> bool:
        current = self._marks.get(sensor_id)
        if current is not None and timestamp <= current:
            return False
        self._marks[sensor_id] = timestamp
        return True

    def reset(self) -> None:
        self._marks.clear()

    def snapshot(self) -> Dict[str, datetime]:
        return dict(self._marks)

    def __len__(self) -> int:
        return len(self._marks)
