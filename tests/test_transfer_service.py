from contextlib import contextmanager

import pytest
from sqlalchemy import update

from fuelcost.extensions import db
from fuelcost.models import DieselTransaction, DieselWarehouse
from fuelcost.services import transfer_service as transfer_module
from fuelcost.services.errors import InsufficientInventoryError, RecordNotFoundError, TransferError
from fuelcost.services.fifo_costing import CostingMethod, FifoCostingService, InsufficientPriceHistoryError
from fuelcost.services.transfer_service import TransferService


def _transfer_rows():
    return DieselTransaction.query.filter(DieselTransaction.is_transfer.is_(True)).all()


def _balance(warehouse_id):
    db.session.expire_all()
    return db.session.get(DieselWarehouse, warehouse_id).current_inventory


class TestCreateTransfer:

    def test_transfer_in_carries_source_fifo_cost(self, app, ledger, scenario_one, day):
        source, product = scenario_one
        destination = ledger.warehouse(plant_code='P2', plant_name='Planta 2')
        expected = FifoCostingService.from_app().compute_withdrawal_cost(source.id, product.id, 1000.0, day(11))

        result = TransferService().create_transfer(
            from_warehouse_id=source.id,
            to_warehouse_id=destination.id,
            quantity_liters=1000,
            transaction_date=day(11),
        )

        out_row, in_row = result.transfer_out, result.transfer_in
        assert in_row.unit_cost == expected.unit_cost
        assert out_row.unit_cost == expected.unit_cost
        assert in_row.unit_cost == pytest.approx(1.20)
        assert in_row.total_cost == pytest.approx(1200.0)
        assert result.cost.method is CostingMethod.FIFO

        assert out_row.is_transfer and in_row.is_transfer
        assert out_row.reference_transaction_id == in_row.id
        assert in_row.reference_transaction_id == out_row.id
        assert out_row.transaction_id == 'DSL-P1-20250111-TRF-OUT'
        assert in_row.transaction_id == 'DSL-P2-20250111-TRF-IN'
        assert out_row.notes.startswith('[TRANSFER] To Planta 2 (P2)')
        assert in_row.notes.startswith('[TRANSFER] From Plant P1 (P1)')

        assert _balance(source.id) == 1000.0
        assert _balance(destination.id) == 1000.0

    def test_transfer_in_becomes_lot_at_destination(self, app, ledger, scenario_one, day):
        source, product = scenario_one
        destination = ledger.warehouse(plant_code='P2')
        TransferService().create_transfer(
            from_warehouse_id=source.id, to_warehouse_id=destination.id, quantity_liters=1000, transaction_date=day(11)
        )

        at_destination = FifoCostingService.from_app().compute_withdrawal_cost(
            destination.id, product.id, 400.0, day(12)
        )

        assert at_destination.method is CostingMethod.FIFO
        assert at_destination.unit_cost == pytest.approx(1.20)

    def test_rejected_without_price_history(self, app, ledger, day):
        product = ledger.product()
        source = ledger.warehouse(plant_code='P1')
        destination = ledger.warehouse(plant_code='P2')
        ledger.entry(source, product, 1000.0, day(1))  # unpriced

        with pytest.raises(InsufficientPriceHistoryError):
            TransferService().create_transfer(
                from_warehouse_id=source.id, to_warehouse_id=destination.id, quantity_liters=500, transaction_date=day(2)
            )

        assert _transfer_rows() == []
        assert _balance(source.id) == 1000.0
        assert _balance(destination.id) == 0.0

    def test_failure_after_first_leg_rolls_back_everything(self, app, ledger, scenario_one, day, monkeypatch):
        source, product = scenario_one
        destination = ledger.warehouse(plant_code='P2')
        real_builder = transfer_module.build_transaction_code

        def failing_builder(product_type, plant_code, when, kind):
            if kind == 'transfer_in':
                raise RuntimeError('disk full')
            return real_builder(product_type, plant_code, when, kind)

        monkeypatch.setattr(transfer_module, 'build_transaction_code', failing_builder)

        with pytest.raises(RuntimeError, match='disk full'):
            TransferService().create_transfer(
                from_warehouse_id=source.id, to_warehouse_id=destination.id, quantity_liters=1000, transaction_date=day(11)
            )

        assert _transfer_rows() == []
        assert _balance(source.id) == 2000.0
        assert _balance(destination.id) == 0.0

    def test_same_warehouse_rejected(self, app, scenario_one):
        source, _ = scenario_one

        with pytest.raises(TransferError, match='same warehouse'):
            TransferService().create_transfer(from_warehouse_id=source.id, to_warehouse_id=source.id, quantity_liters=10)

    def test_insufficient_source_balance(self, app, ledger, scenario_one, day):
        source, _ = scenario_one
        destination = ledger.warehouse(plant_code='P2')

        with pytest.raises(InsufficientInventoryError):
            TransferService().create_transfer(
                from_warehouse_id=source.id, to_warehouse_id=destination.id, quantity_liters=2500, transaction_date=day(11)
            )
        assert _transfer_rows() == []

    def test_product_types_must_match(self, app, ledger, scenario_one):
        source, _ = scenario_one
        ledger.product(product_type='urea')
        urea_tank = ledger.warehouse(plant_code='P2', product_type='urea')

        with pytest.raises(TransferError, match='urea'):
            TransferService().create_transfer(from_warehouse_id=source.id, to_warehouse_id=urea_tank.id, quantity_liters=10)

    def test_unknown_destination(self, app, scenario_one):
        source, _ = scenario_one

        with pytest.raises(RecordNotFoundError):
            TransferService().create_transfer(from_warehouse_id=source.id, to_warehouse_id=404, quantity_liters=10)


@pytest.fixture
def two_lot_source(ledger, day):
    """A: 1000 L @ 1.00 (day 1), 1000 L @ 2.00 (day 2), 500 L consumed (day 3)."""
    product = ledger.product()
    source = ledger.warehouse(plant_code='P1')
    destination = ledger.warehouse(plant_code='P2')
    ledger.entry(source, product, 1000.0, day(1), unit_cost=1.00)
    ledger.entry(source, product, 1000.0, day(2), unit_cost=2.00)
    ledger.consumption(source, product, 500.0, day(3))
    return source, destination, product


def _pair_committed_elsewhere_before_lock(monkeypatch, consumption_id, entry_id, unit_cost=None):
    """Let another connection pair (and optionally price) the rows just before the lock is taken."""
    real_lock = transfer_module.serialized_inventory
    table = DieselTransaction.__table__

    @contextmanager
    def lock_after_concurrent_commit(*keys, **kwargs):
        with db.engine.begin() as connection:
            connection.execute(
                update(table).where(table.c.id == consumption_id)
                .values(is_transfer=True, reference_transaction_id=entry_id)
            )
            entry_values = {"is_transfer": True, "reference_transaction_id": consumption_id}
            if unit_cost is not None:
                entry_values.update(unit_cost=unit_cost, total_cost=unit_cost)
            connection.execute(update(table).where(table.c.id == entry_id).values(**entry_values))
        with real_lock(*keys, **kwargs):
            yield

    monkeypatch.setattr(transfer_module, 'serialized_inventory', lock_after_concurrent_commit)


class TestMarkTransfer:

    def test_prices_entry_from_source_without_counting_withdrawal_twice(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 800.0, day(5, hour=8))
        deposit = ledger.entry(destination, product, 800.0, day(5, hour=10))

        result = TransferService().mark_transfer(consumption_id=withdrawal.id, entry_id=deposit.id)

        # 500 L @ 1.00 left from the first lot, then 300 L @ 2.00
        assert result.unit_cost == pytest.approx(1100.0 / 800.0)
        assert result.transfer_in.unit_cost == result.transfer_out.unit_cost
        assert result.transfer_out.is_transfer and result.transfer_in.is_transfer
        assert result.transfer_out.reference_transaction_id == deposit.id
        assert result.transfer_in.reference_transaction_id == withdrawal.id
        assert result.transfer_in.notes.startswith('[TRANSFER] From')

    def test_finds_most_recent_matching_entry_at_destination(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 800.0, day(5, hour=8))
        ledger.entry(destination, product, 800.0, day(4))  # before the withdrawal day
        ledger.entry(destination, product, 800.005, day(5, hour=20))
        latest = ledger.entry(destination, product, 800.0, day(6))
        ledger.entry(destination, product, 750.0, day(7))

        result = TransferService().mark_transfer(consumption_id=withdrawal.id, to_warehouse_id=destination.id)

        assert result.transfer_in.id == latest.id

    def test_no_candidate_on_or_after_withdrawal_day(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 800.0, day(5))
        ledger.entry(destination, product, 800.0, day(4))

        with pytest.raises(RecordNotFoundError):
            TransferService().mark_transfer(consumption_id=withdrawal.id, to_warehouse_id=destination.id)

    def test_unpriceable_withdrawal_leaves_rows_untouched(self, app, ledger, day):
        product = ledger.product()
        source = ledger.warehouse(plant_code='P1')
        destination = ledger.warehouse(plant_code='P2')
        withdrawal = ledger.consumption(source, product, 100.0, day(3))
        deposit = ledger.entry(destination, product, 100.0, day(3))

        with pytest.raises(InsufficientPriceHistoryError):
            TransferService().mark_transfer(consumption_id=withdrawal.id, entry_id=deposit.id)

        db.session.expire_all()
        assert _transfer_rows() == []
        assert db.session.get(DieselTransaction, deposit.id).unit_cost is None

    def test_preserve_price_off_links_without_pricing(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 800.0, day(5))
        deposit = ledger.entry(destination, product, 800.0, day(5))

        result = TransferService().mark_transfer(
            consumption_id=withdrawal.id, entry_id=deposit.id, preserve_price=False
        )

        assert result.unit_cost is None
        assert result.transfer_in.is_transfer
        assert result.cost is None

    def test_recorded_transfer_out_price_is_reused(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 100.0, day(5), unit_cost=1.75)
        deposit = ledger.entry(destination, product, 100.0, day(5))

        result = TransferService().mark_transfer(consumption_id=withdrawal.id, entry_id=deposit.id)

        assert result.transfer_in.unit_cost == 1.75
        assert result.cost is None

    @pytest.mark.parametrize('problem, message', [
        ('quantity', 'Quantities do not match'),
        ('same_warehouse', 'same warehouse'),
        ('already_transfer', 'already marked'),
        ('product', 'different products'),
    ])
    def test_invalid_pairs_rejected(self, app, ledger, two_lot_source, day, problem, message):
        source, destination, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 100.0, day(5))
        if problem == 'quantity':
            deposit = ledger.entry(destination, product, 90.0, day(5))
        elif problem == 'same_warehouse':
            deposit = ledger.entry(source, product, 100.0, day(5))
        elif problem == 'already_transfer':
            deposit = ledger.entry(destination, product, 100.0, day(5), is_transfer=True)
        else:
            deposit = ledger.entry(destination, ledger.product(), 100.0, day(5))

        with pytest.raises(TransferError, match=message):
            TransferService().mark_transfer(consumption_id=withdrawal.id, entry_id=deposit.id)

    def test_pairing_committed_while_waiting_is_rechecked(self, app, ledger, two_lot_source, day, monkeypatch):
        source, destination, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 800.0, day(5))
        first = ledger.entry(destination, product, 800.0, day(5, hour=14))
        second = ledger.entry(destination, product, 800.0, day(5, hour=15))
        withdrawal_id, first_id, second_id = withdrawal.id, first.id, second.id
        _pair_committed_elsewhere_before_lock(monkeypatch, withdrawal_id, first_id)

        with pytest.raises(TransferError, match='already marked'):
            TransferService().mark_transfer(consumption_id=withdrawal_id, entry_id=second_id)

        db.session.expire_all()
        assert db.session.get(DieselTransaction, withdrawal_id).reference_transaction_id == first_id
        assert db.session.get(DieselTransaction, second_id).is_transfer is False
        assert db.session.get(DieselTransaction, second_id).reference_transaction_id is None

    def test_requires_entry_or_destination(self, app, ledger, two_lot_source, day):
        source, _, product = two_lot_source
        withdrawal = ledger.consumption(source, product, 100.0, day(5))

        with pytest.raises(TransferError, match='entry_id or to_warehouse_id'):
            TransferService().mark_transfer(consumption_id=withdrawal.id)

    def test_unknown_consumption(self, app, ledger):
        with pytest.raises(RecordNotFoundError):
            TransferService().mark_transfer(consumption_id=12345, entry_id=1)


def _unpriced_pair(ledger, source, destination, product, liters, when, out_price=None):
    out_row = ledger.consumption(source, product, liters, when, unit_cost=out_price, is_transfer=True)
    in_row = ledger.entry(destination, product, liters, when, is_transfer=True, reference=out_row)
    ledger.link(out_row, in_row)
    return out_row, in_row


class TestFixTransferPrice:

    def test_fills_both_legs_from_source_cost(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        out_row, in_row = _unpriced_pair(ledger, source, destination, product, 800.0, day(5))

        outcome = TransferService().fix_transfer_price(in_row.id)

        assert outcome.unit_cost == pytest.approx(1100.0 / 800.0)
        assert outcome.fixed_transfer_out is True
        db.session.expire_all()
        assert db.session.get(DieselTransaction, in_row.id).unit_cost == outcome.unit_cost
        assert db.session.get(DieselTransaction, out_row.id).unit_cost == outcome.unit_cost

    def test_reuses_recorded_transfer_out_cost(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        _, in_row = _unpriced_pair(ledger, source, destination, product, 100.0, day(5), out_price=1.42)

        outcome = TransferService().fix_transfer_price(in_row.id)

        assert outcome.unit_cost == 1.42
        assert outcome.fixed_transfer_out is False

    def test_already_priced_is_left_alone(self, app, ledger, scenario_one, day):
        source, product = scenario_one
        destination = ledger.warehouse(plant_code='P2')
        result = TransferService().create_transfer(
            from_warehouse_id=source.id, to_warehouse_id=destination.id, quantity_liters=100, transaction_date=day(11)
        )

        outcome = TransferService().fix_transfer_price(result.transfer_in.id)

        assert outcome.already_priced is True
        assert outcome.unit_cost == pytest.approx(1.20)

    def test_price_set_while_waiting_is_left_alone(self, app, ledger, two_lot_source, day, monkeypatch):
        source, destination, product = two_lot_source
        out_row, in_row = _unpriced_pair(ledger, source, destination, product, 100.0, day(5))
        out_id, in_id = out_row.id, in_row.id
        _pair_committed_elsewhere_before_lock(monkeypatch, out_id, in_id, unit_cost=1.11)

        outcome = TransferService().fix_transfer_price(in_id)

        assert outcome.already_priced is True
        assert outcome.unit_cost == 1.11
        db.session.expire_all()
        assert db.session.get(DieselTransaction, out_id).unit_cost is None

    def test_regular_entry_is_not_a_transfer(self, app, ledger, two_lot_source, day):
        _, destination, product = two_lot_source
        deposit = ledger.entry(destination, product, 10.0, day(5))

        with pytest.raises(TransferError, match='not a transfer'):
            TransferService().fix_transfer_price(deposit.id)

    def test_fix_all_reports_fixed_failed_and_skipped(self, app, ledger, two_lot_source, day):
        source, destination, product = two_lot_source
        empty_source = ledger.warehouse(plant_code='P3')
        _, fixable = _unpriced_pair(ledger, source, destination, product, 800.0, day(5))
        _, unfixable = _unpriced_pair(ledger, empty_source, destination, product, 50.0, day(6))
        orphan = ledger.entry(destination, product, 25.0, day(7), is_transfer=True)

        report = TransferService().fix_all_transfer_prices()

        assert [outcome.entry_id for outcome in report.fixed] == [fixable.id]
        assert [failure['entry_id'] for failure in report.failed] == [unfixable.id]
        assert [skipped['entry_id'] for skipped in report.skipped] == [orphan.id]
        assert report.to_dict()['summary'] == {'fixed': 1, 'failed': 1, 'skipped': 1}
        db.session.expire_all()
        assert db.session.get(DieselTransaction, fixable.id).unit_cost == pytest.approx(1100.0 / 800.0)
        assert db.session.get(DieselTransaction, unfixable.id).unit_cost is None
