#!/usr/bin/env python3
"""
Exam Proctoring Ledger - Metadata Store
Per-user exam metadata records with default-on-miss reads and atomic upserts
"""

import threading
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

MAX_VIOLATIONS = 3
LOCK_STRIPES = 64
USER_ID_LENGTH = 32
U64_MAX = 2 ** 64 - 1

UserId = bytes
Violations = Tuple[Optional[int], ...]


def _empty_violations() -> Violations:
    return (None,) * MAX_VIOLATIONS


def _ts_to_wire(value: Optional[int]) -> Optional[str]:
    # XML-RPC ints are 32-bit, timestamps travel as strings
    return None if value is None else str(value)


def _ts_from_wire(value) -> Optional[int]:
    return None if value is None else parse_timestamp(value)


@dataclass(frozen=True)
class ExamMetadata:
    """Exam state for one user.

    ``kicked`` is derived from slot occupancy and cannot be passed in.
    """

    start_time: Optional[int] = None
    end_time: Optional[int] = None
    violations: Violations = field(default_factory=_empty_violations)
    kicked: bool = field(init=False, default=False)

    def __post_init__(self):
        if len(self.violations) != MAX_VIOLATIONS:
            raise ValueError(f"violations must have exactly {MAX_VIOLATIONS} slots")
        object.__setattr__(self, "violations", tuple(self.violations))
        object.__setattr__(self, "kicked", all(s is not None for s in self.violations))

    def with_violation(self, violation_time: int) -> "ExamMetadata":
        """Return a copy with the violation in the first free slot.

        A full log leaves the slots untouched.
        """
        slots = list(self.violations)
        for i, slot in enumerate(slots):
            if slot is None:
                slots[i] = violation_time
                break
        return replace(self, violations=tuple(slots))

    @property
    def violation_count(self) -> int:
        return sum(1 for s in self.violations if s is not None)

    def to_dict(self) -> Dict:
        return {
            "start_time": _ts_to_wire(self.start_time),
            "end_time": _ts_to_wire(self.end_time),
            "violations": [_ts_to_wire(v) for v in self.violations],
            "kicked": self.kicked,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ExamMetadata":
        # "kicked" on the wire is ignored, the slots decide
        violations = data.get("violations") or [None] * MAX_VIOLATIONS
        return cls(
            start_time=_ts_from_wire(data.get("start_time")),
            end_time=_ts_from_wire(data.get("end_time")),
            violations=tuple(_ts_from_wire(v) for v in violations),
        )


def parse_user_id(value: Union[bytes, str]) -> UserId:
    """Accept raw 32-byte ids or their hex form (optionally 0x-prefixed)"""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"User id is not valid hex: {value!r}")
    else:
        raise ValueError(f"Unsupported user id type: {type(value).__name__}")

    if len(raw) != USER_ID_LENGTH:
        raise ValueError(f"User id must be {USER_ID_LENGTH} bytes, got {len(raw)}")
    return raw


def parse_timestamp(value: Union[int, str]) -> int:
    """Accept an int or decimal string within the u64 range"""
    if isinstance(value, bool):
        raise ValueError("Timestamp must be an integer, not a boolean")
    if isinstance(value, int):
        ts = value
    elif isinstance(value, str) and value.strip().isdecimal():
        ts = int(value.strip())
    else:
        raise ValueError(f"Timestamp must be a non-negative integer: {value!r}")

    if ts < 0 or ts > U64_MAX:
        raise ValueError(f"Timestamp out of u64 range: {ts}")
    return ts


class MetadataStore:
    """Mapping of user id to ExamMetadata, updated whole-record only"""

    def __init__(self, lock_stripes: int = LOCK_STRIPES):
        self._records: Dict[UserId, ExamMetadata] = {}
        # Fixed pool; a key always maps to the same stripe
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(lock_stripes)]

    def _lock_for(self, user: UserId) -> threading.Lock:
        return self._locks[hash(user) % len(self._locks)]

    def get(self, user: UserId) -> Optional[ExamMetadata]:
        return self._records.get(user)

    def get_or_default(self, user: UserId) -> ExamMetadata:
        record = self._records.get(user)
        return record if record is not None else ExamMetadata()

    def upsert(self, user: UserId, record: ExamMetadata):
        with self._lock_for(user):
            self._records[user] = record

    def update(self, user: UserId,
               transition: Callable[[ExamMetadata], Optional[ExamMetadata]]) -> ExamMetadata:
        """Atomic read-modify-write of one user's record.

        ``transition`` receives the current record (or the default) and
        returns the record to store, or None to skip the write. Returns the
        record as it stands afterwards.
        """
        with self._lock_for(user):
            current = self.get_or_default(user)
            updated = transition(current)
            if updated is None:
                return current
            self._records[user] = updated
            logger.debug(f"Record for {user.hex()} updated")
            return updated

    def __contains__(self, user: UserId) -> bool:
        return user in self._records

    def __len__(self) -> int:
        return len(self._records)
