"""Sequence and timing gap detection for streamed messages."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

from . import timeutils

logger = logging.getLogger(__name__)

RECEIPT_TIME = "receipt"
DECLARED_TIME = "declared"
_TIME_BASES = (RECEIPT_TIME, DECLARED_TIME)


@dataclass(frozen=True)
class WsMessage:
    seq: int
    ts_ms: int
    payload: Any = None


@dataclass(frozen=True)
class GapEvent:
    gap_detected: bool
    received_seq: int
    expected_next_seq: Optional[int] = None
    quality_flag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


GapListener = Callable[[GapEvent], None]


class GapDetector:
    """Tracks the last sequence number and timestamp of one stream.

    A message is gapped when its sequence number is not the successor of the
    previous one, or when more than ``max_gap_ms`` elapsed since the previous
    message. With the default ``receipt`` time basis the elapsed time is
    measured on the local clock between ``ingest`` calls; the ``declared``
    basis uses the timestamps carried by the messages instead.

    State is updated after every message, including gapped ones, so the
    detector resynchronizes on the latest sequence number.
    """

    def __init__(self, label: str, max_gap_ms: int = 5_000, time_basis: str = RECEIPT_TIME) -> None:
        if time_basis not in _TIME_BASES:
            raise ValueError(f"time_basis must be one of {_TIME_BASES}, got {time_basis!r}")
        self.label = label
        self.max_gap_ms = max_gap_ms
        self.time_basis = time_basis
        self.last_seq: Optional[int] = None
        self.last_ts_ms: Optional[int] = None
        self._listeners: List[GapListener] = []

    def add_listener(self, listener: GapListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: GapListener) -> None:
        self._listeners.remove(listener)

    def ingest(self, message: WsMessage) -> GapEvent:
        observed_ts = timeutils.now_ms() if self.time_basis == RECEIPT_TIME else int(message.ts_ms)

        expected_next_seq = self.last_seq + 1 if self.last_seq is not None else None
        seq_gap = expected_next_seq is not None and message.seq != expected_next_seq
        time_gap = self.last_ts_ms is not None and observed_ts - self.last_ts_ms > self.max_gap_ms
        gap_detected = seq_gap or time_gap

        event = GapEvent(
            gap_detected=gap_detected,
            received_seq=message.seq,
            expected_next_seq=expected_next_seq,
            quality_flag=f"{self.label}_gap_detected" if gap_detected else None,
        )

        self.last_seq = message.seq
        self.last_ts_ms = observed_ts

        if gap_detected:
            logger.warning("WS gap detected for %s: %s", self.label, event)
            self._notify(event)
        return event

    def _notify(self, event: GapEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Gap listener failed for %s", self.label)


class GapDetectorRegistry:
    """Holds one GapDetector per stream label."""

    def __init__(self, max_gap_ms: int = 5_000, time_basis: str = RECEIPT_TIME) -> None:
        if time_basis not in _TIME_BASES:
            raise ValueError(f"time_basis must be one of {_TIME_BASES}, got {time_basis!r}")
        self._max_gap_ms = max_gap_ms
        self._time_basis = time_basis
        self._detectors: Dict[str, GapDetector] = {}

    def get(self, label: str) -> GapDetector:
        detector = self._detectors.get(label)
        if detector is None:
            detector = GapDetector(label, max_gap_ms=self._max_gap_ms, time_basis=self._time_basis)
            self._detectors[label] = detector
        return detector

    def labels(self) -> List[str]:
        return list(self._detectors)
