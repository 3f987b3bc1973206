import re
from typing import Iterable, List, Optional, Sequence

from .models import (
    FieldKey, RawExtractedRecord, RecordError, ValidationResult, ValidationSummary,
)
from .normalize import clean_numeric

F = FieldKey

# Bank-agnostic: banks.missing_fields is the per-bank policy and is reported separately.
REQUIRED_FIELDS: Sequence[FieldKey] = (
    F.NIK, F.NAMA, F.NO_REK, F.NO_ATM, F.NO_HP, F.PIN_ATM, F.MOBILE_PIN, F.EMAIL, F.EXPIRED,
)

PIN_FIELDS = (
    F.PIN_ATM, F.MOBILE_PIN, F.IB_PIN, F.MYBCA_PIN, F.PIN_MBCA,
    F.BRIMO_PIN, F.OCBC_NYALA_PIN, F.PIN_WONDR,
)

# mobilePin in a required list stands for "some secondary PIN": banks name it differently.
SECONDARY_PINS = tuple(key for key in PIN_FIELDS if key != F.PIN_ATM)

NIK_RE = re.compile(r"^\d{16}$")
NO_REK_RE = re.compile(r"^\d{10,18}$")
NO_ATM_RE = re.compile(r"^\d{16}$")
NO_HP_RE = re.compile(r"^(\+62|62|0)8\d{7,10}$")
PIN_RE = re.compile(r"^\d{4,6}$")
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$")


def _present(record: RawExtractedRecord, key: FieldKey) -> Optional[str]:
    value = record.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def check_record(record: RawExtractedRecord,
                 required: Sequence[FieldKey] = REQUIRED_FIELDS) -> List[str]:
    """All field-level problems of one record, presence first, then formats."""
    errors = []
    for key in required:
        if key == F.MOBILE_PIN:
            if not any(_present(record, pin) for pin in SECONDARY_PINS):
                errors.append("secondary PIN is required")
        elif _present(record, key) is None:
            errors.append(f"{key.value} is required")

    nik = _present(record, F.NIK)
    if nik is not None and not NIK_RE.match(nik):
        errors.append("NIK must be 16 digits")

    no_rek = _present(record, F.NO_REK)
    if no_rek is not None and not NO_REK_RE.match(no_rek):
        errors.append("Account number must be 10-18 digits")

    no_atm = _present(record, F.NO_ATM)
    if no_atm is not None and not NO_ATM_RE.match(no_atm):
        errors.append("ATM card number must be 16 digits")

    no_hp = _present(record, F.NO_HP)
    if no_hp is not None and not NO_HP_RE.match(clean_numeric(no_hp).replace("(", "").replace(")", "")):
        errors.append("Phone number must look like 08xxxxxxxxx, 628xxxxxxxxx or +628xxxxxxxxx")

    for key in PIN_FIELDS:
        pin = _present(record, key)
        if pin is not None and not PIN_RE.match(pin):
            errors.append(f"{key.value} must be 4-6 digits")

    email = _present(record, F.EMAIL)
    if email is not None and not EMAIL_RE.match(email):
        errors.append("Email address is not valid")

    return errors


def validate(records: Iterable[RawExtractedRecord],
             required: Optional[Sequence[FieldKey]] = None) -> ValidationResult:
    if required is None:
        from .config import settings
        required = settings.required_fields or REQUIRED_FIELDS

    valid, errors = [], []
    total = 0
    for index, record in enumerate(records):
        total += 1
        field_errors = check_record(record, required)
        if field_errors:
            errors.append(RecordError(record_index=index, field_errors=field_errors, record=record))
        else:
            valid.append(record)

    return ValidationResult(
        valid_records=valid,
        errors=errors,
        summary=ValidationSummary(total=total, valid=len(valid), invalid=len(errors)),
    )
