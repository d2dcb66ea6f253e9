"""
Record parser for pipe-delimited customer lines.

Wire format, one customer per line:

    FirstName|LastName|NationalId|Status|EntryDate(MM/DD/YYYY)|PepFlag|ObligatedSubjectFlag

Fields beyond the seventh are ignored.
"""

import logging
from datetime import date, datetime
from typing import NamedTuple, Optional, Union

import pytz
from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)

FIELD_DELIMITER = '|'
REQUIRED_FIELD_COUNT = 7
FULL_NAME_MAX_LENGTH = 100
NATIONAL_ID_LIMIT = 99_999_999
VALID_STATUSES = ('activo', 'inactivo')
ENTRY_DATE_FORMAT = '%m/%d/%Y'

REASON_MISSING_FIELDS = 'missing fields'
REASON_INVALID_ENTRY_DATE = 'invalid entry date'
REASON_INVALID_NATIONAL_ID = 'invalid national id'
REASON_INVALID_STATUS = 'invalid status'
REASON_LINE_TOO_LONG = 'line too long'


class CustomerRecord(BaseModel):
    """Pydantic model for a validated customer record."""

    model_config = ConfigDict(frozen=True)

    full_name: str
    national_id: int
    status: str
    entry_date: date
    is_pep: bool
    is_obligated_subject: Optional[bool] = None
    created_at: datetime

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, v):
        return v[:FULL_NAME_MAX_LENGTH].rstrip()

    @field_validator('national_id')
    @classmethod
    def validate_national_id(cls, v):
        if v < 0 or v >= NATIONAL_ID_LIMIT:
            raise ValueError(f'National id must be in [0, {NATIONAL_ID_LIMIT})')
        return v

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v.lower() not in VALID_STATUSES:
            raise ValueError(f'Status must be one of {VALID_STATUSES}')
        return v


class Rejection(NamedTuple):
    """A source line that failed validation. Counted and logged, never stored."""

    line_number: int
    line: str
    reason: str


ParseResult = Union[CustomerRecord, Rejection]


def parse_entry_date(value: str) -> date:
    """Parse a MM/DD/YYYY date, rejecting impossible calendar dates."""
    if not value or not value.strip():
        raise ValueError('Entry date is required')

    try:
        return datetime.strptime(value.strip(), ENTRY_DATE_FORMAT).date()
    except ValueError:
        raise ValueError(f"Invalid entry date: '{value}' - expected format 'MM/DD/YYYY'")


def parse_national_id(value: str) -> int:
    """Parse the national identifier and check its range."""
    clean_value = value.strip() if value else ''
    if not (clean_value.isascii() and clean_value.isdigit()):
        raise ValueError(f"Invalid national id: '{value}'")

    national_id = int(clean_value)
    if national_id >= NATIONAL_ID_LIMIT:
        raise ValueError(f"National id out of range: {national_id}")

    return national_id


def parse_boolean(value: str) -> bool:
    """Only a literal 'true' (any case, surrounding whitespace allowed) is True."""
    return value.strip().lower() == 'true'


def parse_optional_boolean(value: str) -> Optional[bool]:
    """Empty means unknown; anything else follows parse_boolean."""
    if not value.strip():
        return None
    return parse_boolean(value)


class RecordParser:
    """Turns raw source lines into customer records or rejections."""

    def parse(self, line: str, line_number: int) -> ParseResult:
        """Parse and validate a single line."""
        fields = line.split(FIELD_DELIMITER)

        if len(fields) < REQUIRED_FIELD_COUNT:
            return Rejection(line_number, line, REASON_MISSING_FIELDS)

        first_name, last_name, national_id, status, entry_date, is_pep, is_obligated = (
            fields[:REQUIRED_FIELD_COUNT]
        )

        # Checked in order, first failure wins
        try:
            parsed_date = parse_entry_date(entry_date)
        except ValueError as e:
            logger.debug(f"Line {line_number}: {e}")
            return Rejection(line_number, line, REASON_INVALID_ENTRY_DATE)

        try:
            parsed_id = parse_national_id(national_id)
        except ValueError as e:
            logger.debug(f"Line {line_number}: {e}")
            return Rejection(line_number, line, REASON_INVALID_NATIONAL_ID)

        clean_status = status.strip()
        if clean_status.lower() not in VALID_STATUSES:
            return Rejection(line_number, line, REASON_INVALID_STATUS)

        return CustomerRecord(
            full_name=f"{first_name.strip()} {last_name.strip()}",
            national_id=parsed_id,
            status=clean_status,
            entry_date=parsed_date,
            is_pep=parse_boolean(is_pep),
            is_obligated_subject=parse_optional_boolean(is_obligated),
            created_at=datetime.now(pytz.UTC)
        )
