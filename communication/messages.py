"""
Wire codec for the aggregation protocol.

Every message is a flat ASCII record of comma-separated fields. Control
messages start with a literal marker; contributions carry no marker and are
identified by position alone:

    Contribution     <job>,<part>,<round>
    RoundAck         GACK,<round>
    CompletionAck    AACK,<part>,<round>
    CombinedResult   RESULT,<job>,<round>
"""

from dataclasses import dataclass
from typing import List, Union

from core.errors import MalformedMessage


GACK = "GACK"
AACK = "AACK"
RESULT = "RESULT"

FIELD_SEPARATOR = ","


def _join(*fields) -> bytes:
    return FIELD_SEPARATOR.join(str(f) for f in fields).encode("ascii")


@dataclass(frozen=True)
class Contribution:
    """One worker's share of a round."""
    job_id: int
    part_id: int
    round_id: int

    def encode(self) -> bytes:
        return _join(self.job_id, self.part_id, self.round_id)


@dataclass(frozen=True)
class RoundAck:
    """Relay acknowledgment of a single contribution."""
    round_id: int

    def encode(self) -> bytes:
        return _join(GACK, self.round_id)


@dataclass(frozen=True)
class CompletionAck:
    """Coordinator broadcast confirming a combined result was accepted."""
    part_id: int
    round_id: int

    def encode(self) -> bytes:
        return _join(AACK, self.part_id, self.round_id)


@dataclass(frozen=True)
class CombinedResult:
    """Relay output once every part of a round has arrived."""
    job_id: int
    round_id: int

    def encode(self) -> bytes:
        return _join(RESULT, self.job_id, self.round_id)


Message = Union[Contribution, RoundAck, CompletionAck, CombinedResult]


def split_fields(payload: bytes) -> List[str]:
    """
    Split a raw payload into its string fields.

    Trailing NUL terminators and surrounding whitespace are stripped.

    Args:
        payload: Raw datagram payload

    Returns:
        List of fields

    Raises:
        MalformedMessage: If the payload is not ASCII or is empty
    """
    try:
        text = bytes(payload).decode("ascii")
    except UnicodeDecodeError:
        raise MalformedMessage(payload, "payload is not ASCII")

    text = text.rstrip("\x00").strip()
    if not text:
        raise MalformedMessage(payload, "empty payload")

    return text.split(FIELD_SEPARATOR)


def _parse_id(payload: bytes, value: str, name: str) -> int:
    value = value.strip()
    if not value.isdigit():
        raise MalformedMessage(payload, f"{name} {value!r} is not a non-negative integer")
    return int(value)


def _expect_fields(payload: bytes, fields: List[str], count: int, kind: str):
    if len(fields) != count:
        raise MalformedMessage(
            payload, f"{kind} expects {count} fields, got {len(fields)}"
        )


def decode(payload: bytes) -> Message:
    """
    Parse a payload into a typed message.

    Args:
        payload: Raw datagram payload

    Returns:
        Contribution, RoundAck, CompletionAck or CombinedResult

    Raises:
        MalformedMessage: On a wrong field count, a bad marker or an id
            that is not a non-negative integer
    """
    fields = split_fields(payload)
    marker = fields[0].strip()

    if marker == GACK:
        _expect_fields(payload, fields, 2, "RoundAck")
        return RoundAck(round_id=_parse_id(payload, fields[1], "round id"))

    if marker == AACK:
        _expect_fields(payload, fields, 3, "CompletionAck")
        return CompletionAck(
            part_id=_parse_id(payload, fields[1], "part id"),
            round_id=_parse_id(payload, fields[2], "round id"),
        )

    if marker == RESULT:
        _expect_fields(payload, fields, 3, "CombinedResult")
        return CombinedResult(
            job_id=_parse_id(payload, fields[1], "job id"),
            round_id=_parse_id(payload, fields[2], "round id"),
        )

    _expect_fields(payload, fields, 3, "Contribution")
    return Contribution(
        job_id=_parse_id(payload, fields[0], "job id"),
        part_id=_parse_id(payload, fields[1], "part id"),
        round_id=_parse_id(payload, fields[2], "round id"),
    )
