"""
REGISTRATION CORE - REGISTRATION IDENTIFIER CODEC

Format: BTNM-{ExamType}-{Status}-{Number}

ExamType:
- F: Foundation (Classes 7-9)
- C: Regular / Comp28 (Classes 10-12)

Status:
- D: Draft
- C: Completed

Number: sequence zero-padded to 5 digits (00001, 00002, ...). Larger
sequences widen instead of truncating.

Examples:
- BTNM-F-D-00001 (Foundation, Draft, #1)
- BTNM-C-C-00019 (Regular, Completed, #19)

All functions here are pure.
"""

from dataclasses import dataclass
from enum import Enum

from .errors import MalformedIdentifier

PREFIX = "BTNM"
SEQUENCE_WIDTH = 5


class ExamType(str, Enum):
    FOUNDATION = "foundation"
    REGULAR = "regular"


class RegistrationStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"


EXAM_TYPE_CODES = {
    ExamType.FOUNDATION: "F",
    ExamType.REGULAR: "C",
}

STATUS_CODES = {
    RegistrationStatus.DRAFT: "D",
    RegistrationStatus.COMPLETED: "C",
}

_EXAM_TYPES_BY_CODE = {code: exam_type for exam_type, code in EXAM_TYPE_CODES.items()}
_STATUSES_BY_CODE = {code: status for status, code in STATUS_CODES.items()}


@dataclass(frozen=True)
class RegistrationIdentifier:
    """Decoded form of a registration identifier."""
    exam_type: ExamType
    status: RegistrationStatus
    sequence: int

    def __str__(self):
        return encode(self.exam_type, self.status, self.sequence)


def encode(exam_type, status, sequence: int) -> str:
    """Build `BTNM-<T>-<S>-<NNNNN>` from its parts."""
    exam_type = ExamType(exam_type)
    status = RegistrationStatus(status)
    if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence < 0:
        raise ValueError(f"Sequence must be a non-negative integer, got {sequence!r}")

    padded = str(sequence).zfill(SEQUENCE_WIDTH)
    return f"{PREFIX}-{EXAM_TYPE_CODES[exam_type]}-{STATUS_CODES[status]}-{padded}"


def _split(identifier: str):
    if not isinstance(identifier, str):
        raise MalformedIdentifier(repr(identifier), "not a string")

    parts = identifier.split("-")
    if len(parts) != 4:
        raise MalformedIdentifier(identifier, f"expected 4 segments, got {len(parts)}")
    if parts[0] != PREFIX:
        raise MalformedIdentifier(identifier, f"unknown prefix {parts[0]!r}")
    return parts


def decode(identifier: str) -> RegistrationIdentifier:
    """
    Parse an identifier into (exam_type, status, sequence).

    Raises:
        MalformedIdentifier: wrong segment count, wrong prefix, unknown
            type/status letter, or a non-numeric sequence segment
    """
    _, type_code, status_code, number = _split(identifier)

    exam_type = _EXAM_TYPES_BY_CODE.get(type_code)
    if exam_type is None:
        raise MalformedIdentifier(identifier, f"unknown exam type code {type_code!r}")

    status = _STATUSES_BY_CODE.get(status_code)
    if status is None:
        raise MalformedIdentifier(identifier, f"unknown status code {status_code!r}")

    # str.isdigit() alone accepts non-ASCII digits such as '²'
    if not (number.isascii() and number.isdigit()):
        raise MalformedIdentifier(identifier, f"sequence {number!r} is not a non-negative integer")

    return RegistrationIdentifier(exam_type=exam_type, status=status, sequence=int(number))


def recode(identifier: str, new_status) -> str:
    """
    Rewrite only the status segment of an identifier.

    The exam-type and sequence segments are carried over verbatim, so a
    legacy identifier keeps its original padding.
    """
    decode(identifier)
    new_status = RegistrationStatus(new_status)
    prefix, type_code, _, number = identifier.split("-")
    return f"{prefix}-{type_code}-{STATUS_CODES[new_status]}-{number}"
