from __future__ import annotations

import math

import pytest

from models import Transaction, candidate_from_payload, format_amount, parse_amount


@pytest.mark.parametrize(
    "raw, expected",
    [
        (1000, 1000.0),
        (-12.5, -12.5),
        ("500", 500.0),
        ("$1,200.50", 1200.5),
        ("-₹45", -45.0),
        ("12abc", 12.0),
        ("1.2.3", 1.2),
    ],
)
def test_parse_amount_accepts_numbers_and_cleans_strings(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize(
    "raw", [None, True, False, "", "abc", "--5", math.inf, math.nan, 10**400, -(10**400), [], {}]
)
def test_parse_amount_rejects_non_numbers(raw):
    assert parse_amount(raw) is None


def test_candidate_requires_known_type_and_fields():
    good = {"type": "income", "name": "Paycheck", "date": "2024-01-01", "amount": 1000}
    assert candidate_from_payload(good) == Transaction(
        id=None, type="income", name="Paycheck", date="2024-01-01", amount=1000.0
    )

    assert candidate_from_payload({**good, "type": "transfer"}) is None
    assert candidate_from_payload({**good, "type": ""}) is None
    assert candidate_from_payload({**good, "name": "   "}) is None
    assert candidate_from_payload({**good, "date": ""}) is None
    assert candidate_from_payload({**good, "amount": "n/a"}) is None
    assert candidate_from_payload("not a mapping") is None


def test_candidate_picks_up_attribution_in_either_case_style():
    tx = candidate_from_payload(
        {
            "type": "expenditure",
            "name": "Rent",
            "date": "2024-01-02",
            "amount": "500",
            "createdBy": "admin",
            "updated_by": "guest",
        }
    )
    assert tx is not None
    assert (tx.created_by, tx.updated_by) == ("admin", "guest")


def test_to_client_uses_camel_case():
    tx = Transaction(id=3, type="income", name="Gift", date="2024-03-01", amount=20.0)
    assert tx.to_client() == {
        "id": 3,
        "type": "income",
        "name": "Gift",
        "date": "2024-03-01",
        "amount": 20.0,
        "createdBy": None,
        "updatedBy": None,
    }


def test_format_amount_drops_trailing_zero_for_integers():
    assert format_amount(1000.0) == "1000"
    assert format_amount(12.5) == "12.5"
    assert format_amount(None) == ""


def test_format_amount_never_uses_exponent_notation():
    assert format_amount(0.00001) == "0.00001"
    assert format_amount(-0.0000025) == "-0.0000025"
    assert parse_amount(format_amount(0.00001)) == 0.00001


def test_candidate_keeps_name_as_submitted():
    tx = candidate_from_payload({"type": "expenditure", "name": "Rent ", "date": "2024-01-02", "amount": 5})
    assert tx is not None
    assert tx.name == "Rent "
