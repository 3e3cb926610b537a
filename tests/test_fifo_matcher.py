from datetime import datetime

import pytest

from fuelcost.services.fifo_costing import InvalidQuantityError, Lot, consume_fifo

DAY_1 = datetime(2025, 1, 1)
DAY_5 = datetime(2025, 1, 5)
DAY_10 = datetime(2025, 1, 10)


def _lot(liters, unit_cost, when, entry_id=None):
    return Lot(quantity_remaining=liters, unit_cost=unit_cost, entry_timestamp=when, entry_id=entry_id)


def test_draws_oldest_lot_first_regardless_of_input_order():
    lots = [_lot(3000.0, 1.20, DAY_5, 2), _lot(5000.0, 1.00, DAY_1, 1)]

    result = consume_fifo(lots, 6000.0, cutoff_date=DAY_10)

    assert result.matched_liters == 6000.0
    assert result.unmatched_liters == 0.0
    assert result.matched_cost == pytest.approx(6200.0)
    assert [(lot.entry_id, lot.quantity_remaining) for lot in result.remaining_lots] == [(2, 2000.0)]


def test_partial_draw_keeps_remainder_of_oldest_lot():
    lots = [_lot(500.0, 1.00, DAY_1, 1), _lot(500.0, 2.00, DAY_5, 2)]

    result = consume_fifo(lots, 200.0, cutoff_date=DAY_10)

    assert result.matched_cost == pytest.approx(200.0)
    assert [(lot.entry_id, lot.quantity_remaining) for lot in result.remaining_lots] == [(1, 300.0), (2, 500.0)]


def test_lots_dated_after_cutoff_are_kept_but_not_drawn():
    lots = [_lot(100.0, 1.00, DAY_1, 1), _lot(100.0, 2.00, DAY_10, 2)]

    result = consume_fifo(lots, 150.0, cutoff_date=DAY_5)

    assert result.matched_liters == 100.0
    assert result.unmatched_liters == 50.0
    assert result.matched_cost == pytest.approx(100.0)
    assert [(lot.entry_id, lot.quantity_remaining) for lot in result.remaining_lots] == [(2, 100.0)]


def test_residue_at_or_below_epsilon_is_dropped():
    result = consume_fifo([_lot(100.005, 1.00, DAY_1)], 100.0, cutoff_date=DAY_10)

    assert result.matched_liters == 100.0
    assert result.remaining_lots == ()


def test_lot_already_at_epsilon_is_never_drawn():
    lots = [_lot(0.01, 50.0, DAY_1, 1), _lot(50.0, 1.00, DAY_5, 2)]

    result = consume_fifo(lots, 10.0, cutoff_date=DAY_10)

    assert result.matched_cost == pytest.approx(10.0)
    assert [lot.entry_id for lot in result.remaining_lots] == [2]


def test_exhausted_lots_report_unmatched_remainder():
    result = consume_fifo([_lot(500.0, 1.00, DAY_1)], 600.0, cutoff_date=DAY_10)

    assert result.matched_liters == 500.0
    assert result.unmatched_liters == 100.0
    assert result.remaining_lots == ()


def test_epsilon_is_configurable():
    result = consume_fifo([_lot(100.5, 1.00, DAY_1)], 100.0, cutoff_date=DAY_10, epsilon=1.0)

    assert result.remaining_lots == ()


def test_input_lots_are_left_untouched():
    lots = [_lot(5000.0, 1.00, DAY_1, 1)]

    consume_fifo(lots, 4000.0, cutoff_date=DAY_10)

    assert lots == [_lot(5000.0, 1.00, DAY_1, 1)]


def test_zero_request_matches_nothing():
    lots = (_lot(100.0, 1.00, DAY_1, 1),)

    result = consume_fifo(lots, 0.0)

    assert result.matched_liters == 0.0
    assert result.matched_cost == 0.0
    assert result.remaining_lots == lots


@pytest.mark.parametrize("requested", [-1.0, float("nan"), float("inf")])
def test_invalid_request_is_rejected(requested):
    with pytest.raises(InvalidQuantityError):
        consume_fifo([_lot(100.0, 1.00, DAY_1)], requested)
