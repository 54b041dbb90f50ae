"""
backend.custom_fields.validation: Per-type value validation.

``field`` is any object exposing ``type``, ``label``, ``required``,
``validation`` (dict or None) and ``options`` (list of ``{"value", "label"}``).
Failures raise ``BadRequestError`` with a message naming the field label.
Uniqueness needs the database and is checked by the service layer.
"""

from __future__ import annotations

import numbers
import re
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping
from urllib.parse import urlparse

from backend.core.errors import BadRequestError
from backend.domain.enums import FieldType

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\d\s\-+()]+$")

TEXT_TYPES = {FieldType.TEXT, FieldType.TEXTAREA, FieldType.RICH_TEXT}
NUMBER_TYPES = {FieldType.NUMBER, FieldType.CURRENCY, FieldType.RATING, FieldType.SLIDER}
DATE_TYPES = {FieldType.DATE, FieldType.DATETIME}
SINGLE_CHOICE_TYPES = {FieldType.SELECT, FieldType.RADIO}
MULTI_CHOICE_TYPES = {FieldType.MULTI_SELECT, FieldType.CHECKBOX}


def is_empty(value: Any) -> bool:
    return value is None or value == ""


def option_values(options: Iterable[Any]) -> List[Any]:
    out = []
    for opt in options or []:
        if isinstance(opt, Mapping):
            out.append(opt.get("value"))
        else:
            out.append(opt)
    return out


def _check_text(value: Any, rules: Mapping[str, Any], label: str) -> None:
    if not isinstance(value, str):
        raise BadRequestError(f"{label} must be text")
    min_len = rules.get("min_length")
    max_len = rules.get("max_length")
    if min_len and len(value) < min_len:
        raise BadRequestError(f"{label} must be at least {min_len} characters")
    if max_len and len(value) > max_len:
        raise BadRequestError(f"{label} must be at most {max_len} characters")


def _check_number(value: Any, rules: Mapping[str, Any], label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or value != value:
        raise BadRequestError(f"{label} must be a number")
    if rules.get("min") is not None and value < rules["min"]:
        raise BadRequestError(f"{label} must be at least {rules['min']}")
    if rules.get("max") is not None and value > rules["max"]:
        raise BadRequestError(f"{label} must be at most {rules['max']}")


def _check_email(value: Any, label: str) -> None:
    if not isinstance(value, str) or not EMAIL_RE.match(value):
        raise BadRequestError(f"{label} must be a valid email address")


def _check_url(value: Any, label: str) -> None:
    parsed = urlparse(value) if isinstance(value, str) else None
    if parsed is None or not parsed.scheme or not parsed.netloc:
        raise BadRequestError(f"{label} must be a valid URL")


def parse_date(value: Any) -> datetime:
    """ISO-8601 date or datetime; a trailing ``Z`` is read as UTC."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        raise ValueError("not a date string")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _check_date(value: Any, label: str) -> None:
    try:
        parse_date(value)
    except ValueError:
        raise BadRequestError(f"{label} must be a valid date")


def _check_choice(value: Any, options: Any, label: str) -> None:
    if value not in option_values(options):
        raise BadRequestError(f"{label} must be one of the available options")


def _check_multi_choice(value: Any, options: Any, label: str) -> None:
    if not isinstance(value, list):
        raise BadRequestError(f"{label} must be an array")
    allowed = option_values(options)
    for item in value:
        if item not in allowed:
            raise BadRequestError(f"{label} contains invalid option: {item}")


def _check_phone(value: Any, label: str) -> None:
    if not isinstance(value, str) or not PHONE_RE.match(value):
        raise BadRequestError(f"{label} must be a valid phone number")


def validate_value(field: Any, value: Any) -> None:
    """Raise ``BadRequestError`` when ``value`` does not fit ``field``."""
    rules = field.validation or {}
    label = field.label

    if is_empty(value):
        if field.required:
            raise BadRequestError(f"{label} is required")
        return

    try:
        field_type = FieldType(field.type)
    except ValueError:
        field_type = None

    if field_type in TEXT_TYPES:
        _check_text(value, rules, label)
    elif field_type in NUMBER_TYPES:
        _check_number(value, rules, label)
    elif field_type is FieldType.EMAIL:
        _check_email(value, label)
    elif field_type is FieldType.URL:
        _check_url(value, label)
    elif field_type in DATE_TYPES:
        _check_date(value, label)
    elif field_type in SINGLE_CHOICE_TYPES:
        _check_choice(value, field.options, label)
    elif field_type in MULTI_CHOICE_TYPES:
        _check_multi_choice(value, field.options, label)
    elif field_type is FieldType.PHONE:
        _check_phone(value, label)

    pattern = rules.get("pattern")
    if pattern and isinstance(value, str):
        if not compile_pattern(pattern).search(value):
            raise BadRequestError(rules.get("pattern_message") or f"{label} format is invalid")


def compile_pattern(pattern: Any) -> "re.Pattern[str]":
    """Compile a tenant-supplied ``validation.pattern``; bad ones are a 400."""
    if not isinstance(pattern, str):
        raise BadRequestError("Validation pattern must be a string")
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise BadRequestError(f"Invalid validation pattern: {exc}") from exc


def check_rules(rules: Any) -> None:
    """Reject a definition's ``validation`` block before it is stored."""
    if rules is None:
        return
    if not isinstance(rules, Mapping):
        raise BadRequestError("Validation rules must be an object")
    if rules.get("pattern"):
        compile_pattern(rules["pattern"])
