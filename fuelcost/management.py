"""
Management commands for costing checks and ledger maintenance
"""
import click
from flask.cli import with_appcontext

from .services.errors import InventoryServiceError
from .services.fifo_costing import FifoCostingService, InvalidQuantityError
from .services.ledger_lookups import load_warehouse, resolve_product
from .services.transfer_service import TransferService
from .utils.timezone_utils import TimezoneUtils


@click.command('compute-withdrawal-cost')
@click.option('--warehouse-id', required=True, type=int, help='Source warehouse id')
@click.option('--quantity', required=True, type=float, help='Liters to withdraw')
@click.option('--product-id', type=int, default=None, help='Defaults to the warehouse product type')
@click.option('--as-of', default=None, help='ISO timestamp (UTC); defaults to now')
@with_appcontext
def compute_withdrawal_cost_command(warehouse_id, quantity, product_id, as_of):
    """Print the FIFO cost of a hypothetical withdrawal (read-only)"""
    try:
        when = TimezoneUtils.parse_iso(as_of) or TimezoneUtils.utc_now()
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--as-of')

    try:
        warehouse = load_warehouse(warehouse_id)
        product = resolve_product(warehouse, product_id)
        result = FifoCostingService.from_app().compute_withdrawal_cost(warehouse.id, product.id, quantity, when)
    except (InvalidQuantityError, InventoryServiceError) as e:
        raise click.ClickException(str(e))

    print(f"Warehouse {warehouse.warehouse_code} / {product.product_code} at {when.isoformat()}")
    print(f"   method: {result.method.value}")
    print(f"   matched: {result.matched_liters:.2f}L  unmatched: {result.unmatched_liters:.2f}L")
    if result.is_priced:
        print(f"✅ unit cost {result.unit_cost:.4f}  total {result.total_cost:.2f}")
    else:
        print("⚠️  Cannot determine historical cost: no priced entries in the lookback window")


@click.command('fix-transfer-prices')
@click.option('--entry-id', type=int, default=None, help='Repair a single transfer-in row')
@with_appcontext
def fix_transfer_prices_command(entry_id):
    """Fill missing prices on transfer-in rows from their source cost"""
    service = TransferService()

    if entry_id is not None:
        try:
            outcome = service.fix_transfer_price(entry_id)
        except Exception as e:
            print(f'❌ Could not fix transfer-in {entry_id}: {e}')
            raise
        if outcome.already_priced:
            print(f"ℹ️  Transfer-in {entry_id} already priced at {outcome.unit_cost:.4f}")
        else:
            print(f"✅ Transfer-in {entry_id} priced at {outcome.unit_cost:.4f}")
        return

    report = service.fix_all_transfer_prices()
    for outcome in report.fixed:
        print(f"✅ Fixed transfer-in {outcome.entry_id}: {outcome.unit_cost:.4f}")
    for failure in report.failed:
        print(f"❌ Failed transfer-in {failure['entry_id']}: {failure['reason']}")
    for skipped in report.skipped:
        print(f"ℹ️  Skipped transfer-in {skipped['entry_id']}: {skipped['reason']}")
    print(f"📊 fixed={len(report.fixed)} failed={len(report.failed)} skipped={len(report.skipped)}")


def register_commands(app):
    """Register CLI commands"""
    # Read-only costing check
    app.cli.add_command(compute_withdrawal_cost_command)

    # Ledger maintenance
    app.cli.add_command(fix_transfer_prices_command)
