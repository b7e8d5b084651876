"""Observation envelope: timestamps, data age, quality flags, provenance."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from . import timeutils
from .hashing import hash_payload
from .timeutils import TimeWindow, calculate_data_age_ms, unify_time_window

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("crypto_observability_mcp.audit")

TRUNCATED_BY_LIMIT = "limited_by_limit_parameter"
_PREVIEW_CHARS = 128


@dataclass(frozen=True)
class RawProvenance:
    source: str
    reference: str
    ts_ms: int
    ttl_ms: Optional[int] = None
    hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"source": self.source, "reference": self.reference, "ts_ms": self.ts_ms}
        if self.ttl_ms is not None:
            out["ttl_ms"] = self.ttl_ms
        if self.hash is not None:
            out["hash"] = self.hash
        return out


@dataclass(frozen=True)
class Provenance:
    calc_version: str
    raw: List[RawProvenance] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"calc_version": self.calc_version, "raw": [entry.to_dict() for entry in self.raw]}


@dataclass(frozen=True)
class Observation:
    ts_ms: int
    data_age_ms: int
    quality_flags: List[str]
    truncated: bool
    provenance: Provenance
    window: TimeWindow
    data: Any
    truncation_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ts_ms": self.ts_ms,
            "data_age_ms": self.data_age_ms,
            "quality_flags": list(self.quality_flags),
            "truncated": self.truncated,
        }
        if self.truncation_reason is not None:
            out["truncation_reason"] = self.truncation_reason
        out["provenance"] = self.provenance.to_dict()
        out["window"] = self.window.to_dict()
        out["data"] = self.data
        return out


@dataclass(frozen=True)
class AuditRecord:
    tool: str
    ts_ms: int
    hash: str
    payload_preview: str
    meta: Optional[Dict[str, Any]] = None


AuditSink = Callable[[AuditRecord], None]


def create_audit_record(tool: str, payload: Any, meta: Optional[Dict[str, Any]] = None) -> AuditRecord:
    text = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    return AuditRecord(
        tool=tool,
        ts_ms=timeutils.now_ms(),
        hash=hash_payload(payload),
        payload_preview=text[:_PREVIEW_CHARS],
        meta=meta,
    )


def logging_audit_sink(record: AuditRecord) -> None:
    audit_logger.info("AUDIT %s %s", record.tool, record.hash, extra={"audit": record})


def merge_quality_flags(*sets: Optional[Iterable[str]]) -> List[str]:
    """Union of flag collections without duplicates, in first-seen order."""
    merged: Dict[str, None] = {}
    for flags in sets:
        for flag in flags or ():
            merged[flag] = None
    return list(merged)


def build_observation(
    data: Any,
    *,
    source_ts_ms: int,
    calc_version: str,
    raw_provenance: Sequence[RawProvenance],
    anchor_ts_ms: Optional[int] = None,
    window_ms: Optional[int] = None,
    quality_flags: Optional[Iterable[str]] = None,
    truncated: bool = False,
    truncation_reason: Optional[str] = None,
    audit_sink: Optional[AuditSink] = None,
) -> Observation:
    """Wrap ``data`` in an observation envelope stamped with the current time.

    ``data_age_ms`` is clamped at zero for source timestamps in the future.
    When ``audit_sink`` is given it receives an audit record of the finished
    observation; sink failures are logged and never reach the caller.
    """
    if truncated and not truncation_reason:
        raise ValueError("truncated observations need a truncation_reason")

    window = unify_time_window(anchor_ts_ms, window_ms)
    ts_ms = timeutils.now_ms()
    observation = Observation(
        ts_ms=ts_ms,
        data_age_ms=calculate_data_age_ms(ts_ms, source_ts_ms),
        quality_flags=merge_quality_flags(quality_flags),
        truncated=truncated,
        truncation_reason=truncation_reason if truncated else None,
        provenance=Provenance(calc_version=calc_version, raw=list(raw_provenance)),
        window=window,
        data=data,
    )

    if audit_sink is not None:
        try:
            audit_sink(create_audit_record("observation", observation.to_dict(), {"calc_version": calc_version}))
        except Exception:
            logger.exception("Audit sink failed for %s", calc_version)
    return observation
