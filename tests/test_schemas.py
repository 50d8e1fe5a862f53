import pytest

from lp_tracker.schemas import ExtractedPosition, ExtractionRecord, coerce_number


def test_coerce_number_handles_dashboard_strings():
    assert coerce_number("$20.77") == 20.77
    assert coerce_number("+39.0") == 39.0
    assert coerce_number("162.55%") == 162.55
    assert coerce_number("1,234.5") == 1234.5
    assert coerce_number(12) == 12.0


def test_coerce_number_rejects_garbage():
    assert coerce_number("n/a") is None
    assert coerce_number("1.2.3") is None
    assert coerce_number(None) is None
    assert coerce_number(True) is None
    assert coerce_number(float("nan")) is None


def test_missing_fields_stay_absent():
    record = ExtractionRecord.model_validate({"total_points": "426.5"})

    assert record.total_points == 426.5
    assert record.balance is None
    assert record.total_fees is None
    assert record.positions is None


def test_positions_without_pair_are_dropped():
    record = ExtractionRecord.model_validate(
        {
            "balance": 500,
            "positions": [
                {"pair": "HYPE/USD", "position_size": "194.21", "apr": "162.55", "status": "In Range"},
                {"position_size": 10},
                "junk",
            ],
        }
    )

    assert [p.pair for p in record.positions] == ["HYPE/USD"]
    assert record.positions[0].position_size == 194.21
    assert record.positions[0].in_range is True


def test_position_in_range_follows_status():
    record = ExtractionRecord.model_validate(
        {"positions": [{"pair": "A/B", "status": "Out of Range"}, {"pair": "C/D"}]}
    )

    assert record.positions[0].in_range is False
    assert record.positions[1].in_range is True


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("In Range", True),
        ("In-Range", True),
        ("in_range", True),
        ("in range ✅", True),
        ("IN RANGE (active)", True),
        ("InRange", True),
        ("Out of Range", False),
        ("out-of-range ⚠️", False),
        ("OutOfRange", False),
    ],
)
def test_position_status_variants(status, expected):
    assert ExtractedPosition(pair="A/B", status=status).in_range is expected


def test_account_number_outside_slots_is_ignored():
    assert ExtractionRecord.model_validate({"account_number": 3}).account_number == 3
    assert ExtractionRecord.model_validate({"account_number": "3"}).account_number == 3
    assert ExtractionRecord.model_validate({"account_number": 11}).account_number is None
    assert ExtractionRecord.model_validate({"account_number": 2.5}).account_number is None


def test_is_empty():
    assert ExtractionRecord().is_empty()
    assert ExtractionRecord(positions=[]).is_empty()
    assert not ExtractionRecord(total_points=1).is_empty()
    assert not ExtractionRecord(balance=0).is_empty()


def test_with_balance_returns_copy():
    record = ExtractionRecord(total_points=10)
    updated = record.with_balance(640.5)

    assert updated.balance == 640.5
    assert record.balance is None
