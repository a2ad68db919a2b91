"""
core/validator.py -- Field-level error accumulator.

Entity modules expose pure validate_* functions that populate a Validator.
The API layer decides how to present the collected errors; raise_if_invalid()
turns them into a ValidationFailed carrying the field -> message map.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from core.errors import ValidationFailed

EMAIL_RX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


class Validator:
    """Collects validation errors keyed by field name.

    Only the first message recorded for a field is kept, so the most basic
    check (e.g. "must be provided") wins over the ones that follow it.
    """

    def __init__(self) -> None:
        self.errors: dict[str, str] = {}

    def valid(self) -> bool:
        return not self.errors

    def add_error(self, key: str, message: str) -> None:
        self.errors.setdefault(key, message)

    def check(self, ok: bool, key: str, message: str) -> None:
        if not ok:
            self.add_error(key, message)

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationFailed(self.errors)


def matches(value: str, rx: re.Pattern) -> bool:
    return rx.match(value) is not None


def permitted_value(value, *permitted) -> bool:
    return value in permitted


def unique(values: Iterable) -> bool:
    values = list(values)
    return len(set(values)) == len(values)
