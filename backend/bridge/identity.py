# bridge/identity.py
"""
Mapping between employee codes and the numeric user ids programmed into terminals.

Attendance records carry the user_id string programmed into the terminal.
The bridge derives it from the employee code: keep the digits, take the last
six, drop leading zeros. Codes without digits all fall back to
DEFAULT_DEVICE_UID, which is why such employees are never put into the sync
map, and why two codes sharing the same six-digit tail are reported as
collisions instead of being resolved.
"""
import re
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_UID = 1000
UID_DIGITS = 6
_NON_DIGIT = re.compile(r"\D")


def digits_only(value) -> str:
    if value is None:
        return ""
    return _NON_DIGIT.sub("", str(value))


def device_uid_for(identifier) -> int:
    """EMP000123 -> 123; no digits at all -> 1000."""
    tail = digits_only(identifier)[-UID_DIGITS:]
    return int(tail) if tail else DEFAULT_DEVICE_UID


def normalise_device_uid(device_uid) -> Optional[str]:
    tail = digits_only(device_uid)
    if not tail:
        return None
    return str(int(tail))


class EmployeeIdentityMap:
    """Per-cycle lookup from device UID to employee internal id."""

    def __init__(self, mapping: Dict[str, int], collisions: Dict[str, List[int]] = None):
        self._mapping = dict(mapping)
        self.collisions = dict(collisions or {})

    @classmethod
    def build(cls, rows: Iterable[Tuple[int, str]]) -> "EmployeeIdentityMap":
        """rows: (internal_id, employee_code) pairs."""
        claims: Dict[str, List[int]] = {}
        for internal_id, code in rows:
            if not digits_only(code):
                continue
            key = str(device_uid_for(code))
            claims.setdefault(key, []).append(internal_id)

        mapping = {}
        collisions = {}
        for key, ids in claims.items():
            if len(ids) == 1:
                mapping[key] = ids[0]
            else:
                collisions[key] = sorted(ids)
        if collisions:
            logger.warning("Device UID collisions (left unmapped): %s", collisions)
        return cls(mapping, collisions)

    def resolve(self, device_uid) -> Optional[int]:
        key = normalise_device_uid(device_uid)
        if key is None:
            return None
        return self._mapping.get(key)

    def is_ambiguous(self, device_uid) -> bool:
        key = normalise_device_uid(device_uid)
        return key is not None and key in self.collisions

    def __len__(self):
        return len(self._mapping)

    def __contains__(self, device_uid):
        return self.resolve(device_uid) is not None


def collisions_for(identifier, rows: Iterable[Tuple[int, str]], exclude_id=None) -> Set[int]:
    """Internal ids of other employees whose code derives the same device UID as `identifier`."""
    uid = device_uid_for(identifier)
    return {
        internal_id for internal_id, code in rows
        if internal_id != exclude_id and device_uid_for(code) == uid
    }
