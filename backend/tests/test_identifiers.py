from datetime import date, datetime

import pytest

from backoffice.domain.identifiers import (
    IdentifierError,
    PREFIX_PURCHASE_ORDER,
    PREFIX_RETURN,
    PREFIX_TRANSFER,
    format_identifier,
    generate_identifier,
    generate_unique_identifier,
    is_valid_identifier,
    parse_identifier,
)


DAY = date(2024, 3, 5)


def test_first_identifier_of_the_day_is_0001():
    assert generate_identifier(PREFIX_PURCHASE_ORDER, [], DAY) == "PO-20240305-0001"


def test_sequence_continues_after_highest_for_same_day():
    existing = ["TRF-20240305-0001", "TRF-20240305-0007", "TRF-20240305-0003"]
    assert generate_identifier(PREFIX_TRANSFER, existing, DAY) == "TRF-20240305-0008"


def test_other_dates_and_prefixes_are_ignored():
    existing = ["RTN-20240304-0042", "PO-20240305-0009", "garbage", ""]
    assert generate_identifier(PREFIX_RETURN, existing, DAY) == "RTN-20240305-0001"


def test_datetime_uses_calendar_date():
    assert generate_identifier(PREFIX_RETURN, [], datetime(2024, 12, 31, 23, 59)) == "RTN-20241231-0001"


def test_sequence_exhausted_raises():
    with pytest.raises(IdentifierError):
        generate_identifier(PREFIX_PURCHASE_ORDER, ["PO-20240305-9999"], DAY)


def test_format_rejects_zero_sequence():
    with pytest.raises(IdentifierError):
        format_identifier(PREFIX_PURCHASE_ORDER, DAY, 0)


def test_parse_and_validate():
    assert parse_identifier("PO-20240305-0012") == ("PO", "20240305", 12)
    assert parse_identifier("PO-2024035-0012") is None
    assert is_valid_identifier("TRF-20240305-0001", PREFIX_TRANSFER)
    assert not is_valid_identifier("TRF-20240305-0001", PREFIX_RETURN)
    assert not is_valid_identifier(None)


def test_unique_generation_retries_on_collision():
    candidates = iter(["PO-20240305-0001", "PO-20240305-0002"])
    taken = {"PO-20240305-0001"}
    result = generate_unique_identifier(lambda: next(candidates), lambda value: value in taken)
    assert result == "PO-20240305-0002"


def test_unique_generation_gives_up_after_attempts():
    with pytest.raises(IdentifierError) as exc:
        generate_unique_identifier(lambda: "PO-20240305-0001", lambda value: True, attempts=3)
    assert "3 attempts" in str(exc.value)
