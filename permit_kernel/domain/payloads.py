"""
Submission payload parsing and validation.

Outing and home payloads arrive as loosely typed mappings from the outer
layer.  They are parsed into frozen ``OutingDetails`` / ``HomeVisitDetails``
values or rejected with ``InvalidPayloadError`` before any state is written.

Times are naive wall-clock times at minute precision, the same precision
``OutingDetails.to_dict`` stores, so a parsed payload and its stored form
always compare equal.  Ordering rules (return after departure) apply to new
submissions only; ``details_from_dict`` rehydrates stored rows without
re-checking them.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time
from typing import Any, Mapping

from permit_kernel.domain.permission import (
    HomeVisitDetails,
    OutingDetails,
    RequestDetails,
    RequestKind,
)
from permit_kernel.exceptions import InvalidPayloadError

OUTING_FIELDS = ("outing_date", "out_time", "return_time", "purpose", "parent_contact")
HOME_FIELDS = ("going_date", "incoming_date", "home_town", "purpose", "parent_contact")


def _require(payload: Mapping[str, Any], name: str) -> Any:
    value = payload.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidPayloadError(name, "is required")
    return value


def _parse_date(payload: Mapping[str, Any], name: str) -> date:
    value = _require(payload, name)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidPayloadError(name, f"not an ISO date: {value!r}") from None


def _minute_time(value: time, name: str) -> time:
    if value.tzinfo is not None:
        raise InvalidPayloadError(name, "must be a local time without UTC offset")
    return value.replace(second=0, microsecond=0)


def _parse_time(payload: Mapping[str, Any], name: str) -> time:
    value = _require(payload, name)
    if not isinstance(value, time):
        try:
            value = time.fromisoformat(str(value))
        except ValueError:
            raise InvalidPayloadError(name, f"not a HH:MM time: {value!r}") from None
    return _minute_time(value, name)


def _parse_text(payload: Mapping[str, Any], name: str) -> str:
    return str(_require(payload, name)).strip()


def _parse_contact(payload: Mapping[str, Any]) -> str:
    contact = _parse_text(payload, "parent_contact")
    digits = "".join(ch for ch in contact if ch.isdigit())
    if len(digits) < 10:
        raise InvalidPayloadError("parent_contact", "needs at least 10 digits")
    return contact


def _outing_fields(payload: Mapping[str, Any]) -> OutingDetails:
    return OutingDetails(
        outing_date=_parse_date(payload, "outing_date"),
        out_time=_parse_time(payload, "out_time"),
        return_time=_parse_time(payload, "return_time"),
        purpose=_parse_text(payload, "purpose"),
        parent_contact=_parse_contact(payload),
    )


def _home_fields(payload: Mapping[str, Any]) -> HomeVisitDetails:
    return HomeVisitDetails(
        going_date=_parse_date(payload, "going_date"),
        incoming_date=_parse_date(payload, "incoming_date"),
        home_town=_parse_text(payload, "home_town"),
        purpose=_parse_text(payload, "purpose"),
        parent_contact=_parse_contact(payload),
    )


def _check_outing(details: OutingDetails) -> OutingDetails:
    if details.return_time <= details.out_time:
        raise InvalidPayloadError("return_time", "must be after out_time")
    return details


def _check_home_visit(details: HomeVisitDetails) -> HomeVisitDetails:
    if details.incoming_date < details.going_date:
        raise InvalidPayloadError("incoming_date", "must not be before going_date")
    return details


def parse_outing(payload: Mapping[str, Any]) -> OutingDetails:
    return _check_outing(_outing_fields(payload))


def parse_home_visit(payload: Mapping[str, Any]) -> HomeVisitDetails:
    return _check_home_visit(_home_fields(payload))


def parse_details(kind: RequestKind, payload: Mapping[str, Any] | RequestDetails) -> RequestDetails:
    """Parse and validate ``payload`` for ``kind``.

    Already-typed details are validated too; their times are truncated to
    the minute like parsed ones.
    """
    if kind == RequestKind.OUTING:
        if isinstance(payload, HomeVisitDetails):
            raise InvalidPayloadError("kind", "home details given for an outing")
        if isinstance(payload, OutingDetails):
            return _check_outing(replace(
                payload,
                out_time=_minute_time(payload.out_time, "out_time"),
                return_time=_minute_time(payload.return_time, "return_time"),
            ))
        return parse_outing(payload)
    if isinstance(payload, OutingDetails):
        raise InvalidPayloadError("kind", "outing details given for a home request")
    if isinstance(payload, HomeVisitDetails):
        return _check_home_visit(payload)
    return parse_home_visit(payload)


def details_from_dict(kind: RequestKind, data: Mapping[str, Any]) -> RequestDetails:
    """Rehydrate stored details (the inverse of ``to_dict``)."""
    if kind == RequestKind.OUTING:
        return _outing_fields(data)
    return _home_fields(data)
