import pytest

from melt.models.participant import ParticipantStatus
from melt.services.leaderboard import (
    ParticipantRow,
    SortDirection,
    SortOption,
    percent_body_weight,
    sort_rows,
    weight_loss,
)


def row(participant_id: int, first_name: str, start_weight=None, end_weight=None, **extra) -> ParticipantRow:
    values = {
        "participant_id": participant_id,
        "email": f"{first_name.lower()}@example.com",
        "first_name": first_name,
        "last_name": None,
        "customer_id": f"email:{first_name.lower()}@example.com",
        "status": ParticipantStatus.COMPLETED if end_weight else ParticipantStatus.IN_PROGRESS,
        "start_weight": start_weight,
        "end_weight": end_weight,
        "weight_loss": weight_loss(start_weight, end_weight),
        "percent_body_weight": percent_body_weight(start_weight, end_weight),
        "start_date": None,
        "end_date": None,
        "orders_count": None,
        "total_spent": None,
    }
    values.update(extra)
    return ParticipantRow(**values)


def test_weight_loss_needs_both_weights():
    assert weight_loss(200, 190) == 10
    assert weight_loss(200, None) is None
    assert weight_loss(None, 190) is None
    assert percent_body_weight(200, 190) == pytest.approx(5.0)


def test_weight_gain_is_negative():
    assert weight_loss(180, 185) == -5


def test_top_three_positive_losses_are_ranked():
    rows = [
        row(1, "Ann", 200, 190),
        row(2, "Bob", 220, 200),
        row(3, "Gus", 180, 185),
        row(4, "Dan", 150),
        row(5, "Eve", 160, 158),
    ]

    ordered = sort_rows(rows)

    assert [r.first_name for r in ordered] == ["Bob", "Ann", "Eve", "Gus", "Dan"]
    assert [r.rank for r in ordered] == [1, 2, 3, None, None]


def test_gain_never_gets_a_medal():
    ordered = sort_rows([row(1, "Ann", 200, 190), row(2, "Gus", 180, 185)])
    assert [r.rank for r in ordered] == [1, None]


def test_ascending_sort_keeps_missing_values_last_and_unranked():
    rows = [row(1, "Ann", 200, 190), row(2, "Dan", 150), row(3, "Bob", 220, 200)]

    ordered = sort_rows(rows, SortOption.WEIGHT_LOSS, SortDirection.ASC)

    assert [r.first_name for r in ordered] == ["Ann", "Bob", "Dan"]
    assert all(r.rank is None for r in ordered)


def test_sort_by_name_is_case_insensitive():
    rows = [row(1, "bob"), row(2, "Ann"), row(3, "cat")]
    ordered = sort_rows(rows, SortOption.NAME, SortDirection.ASC)
    assert [r.first_name for r in ordered] == ["Ann", "bob", "cat"]


def test_sort_by_total_spent():
    rows = [
        row(1, "Ann", total_spent=50.0),
        row(2, "Bob", total_spent=None),
        row(3, "Cat", total_spent=120.0),
    ]
    ordered = sort_rows(rows, SortOption.TOTAL_SPENT, SortDirection.DESC)
    assert [r.first_name for r in ordered] == ["Cat", "Ann", "Bob"]
