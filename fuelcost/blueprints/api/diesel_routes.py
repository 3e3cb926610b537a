import logging
from datetime import date

from flask import Blueprint, request

from ...services.consumption_cost_report import ConsumptionCostReport
from ...services.consumption_service import ConsumptionService
from ...services.errors import InventoryServiceError
from ...services.fifo_costing import FifoCostingService, InsufficientPriceHistoryError, InvalidQuantityError
from ...services.ledger_lookups import load_warehouse, resolve_product
from ...services.transfer_service import TransferService
from ...utils.api_responses import APIResponse
from ...utils.timezone_utils import TimezoneUtils

logger = logging.getLogger(__name__)

diesel_api_bp = Blueprint('diesel_api', __name__, url_prefix='/diesel')

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


class _BadField(ValueError):
    def __init__(self, field, message):
        super().__init__(message)
        self.field = field
        self.message = message


def _as_bool(value, default=False):
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _datetime_field(data, field):
    try:
        return TimezoneUtils.parse_iso(data.get(field))
    except ValueError as exc:
        raise _BadField(field, str(exc)) from None


def _date_arg(field):
    value = request.args.get(field)
    if not value:
        raise _BadField(field, f"{field} is required (YYYY-MM-DD)")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise _BadField(field, f"Invalid date: {value!r}") from None


def _error_response(exc):
    """Map a rejected operation onto the JSON envelope."""
    if isinstance(exc, _BadField):
        return APIResponse.validation_error({exc.field: [exc.message]})
    if isinstance(exc, InvalidQuantityError):
        return APIResponse.validation_error({'quantity_liters': [str(exc)]})
    if isinstance(exc, InsufficientPriceHistoryError):
        return APIResponse.error(
            str(exc),
            errors={'warehouse_id': exc.warehouse_id, 'product_id': exc.product_id},
            status_code=422,
        )
    return APIResponse.error(exc.message, errors=exc.details, status_code=exc.status_code)


_REJECTIONS = (_BadField, InvalidQuantityError, InsufficientPriceHistoryError, InventoryServiceError)


@diesel_api_bp.route('/cost-preview', methods=['POST'])
def cost_preview():
    """Price a hypothetical withdrawal without writing anything"""
    data = APIResponse.handle_request_content()
    try:
        warehouse = load_warehouse(data.get('warehouse_id'))
        product = resolve_product(warehouse, data.get('product_id'))
        as_of = _datetime_field(data, 'as_of') or TimezoneUtils.utc_now()

        result = FifoCostingService.from_app().compute_withdrawal_cost(
            warehouse.id, product.id, data.get('quantity_liters'), as_of
        )
    except _REJECTIONS as exc:
        return _error_response(exc)

    payload = result.to_dict()
    payload.update({'warehouse_id': warehouse.id, 'product_id': product.id, 'as_of': as_of.isoformat()})
    return APIResponse.success(payload, message='Cost computed')


@diesel_api_bp.route('/entries', methods=['POST'])
def create_entry():
    data = APIResponse.handle_request_content()
    try:
        row = ConsumptionService().record_entry(
            warehouse_id=data.get('warehouse_id'),
            product_id=data.get('product_id'),
            quantity_liters=data.get('quantity_liters'),
            unit_cost=data.get('unit_cost'),
            transaction_date=_datetime_field(data, 'transaction_date'),
            notes=data.get('notes'),
            created_by=data.get('created_by'),
        )
    except _REJECTIONS as exc:
        return _error_response(exc)
    return APIResponse.success(row.to_dict(), message='Entry recorded', status_code=201)


@diesel_api_bp.route('/consumptions', methods=['POST'])
def create_consumption():
    data = APIResponse.handle_request_content()
    try:
        recorded = ConsumptionService().record_consumption(
            warehouse_id=data.get('warehouse_id'),
            product_id=data.get('product_id'),
            quantity_liters=data.get('quantity_liters'),
            transaction_date=_datetime_field(data, 'transaction_date'),
            asset_id=data.get('asset_id'),
            notes=data.get('notes'),
            created_by=data.get('created_by'),
        )
    except _REJECTIONS as exc:
        return _error_response(exc)
    return APIResponse.success(recorded.to_dict(), message='Consumption recorded', status_code=201)


@diesel_api_bp.route('/transfers', methods=['POST'])
def create_transfer():
    """Move liters between two warehouses, carrying the source FIFO cost"""
    data = APIResponse.handle_request_content()
    try:
        result = TransferService().create_transfer(
            from_warehouse_id=data.get('from_warehouse_id'),
            to_warehouse_id=data.get('to_warehouse_id'),
            quantity_liters=data.get('quantity_liters'),
            product_id=data.get('product_id'),
            transaction_date=_datetime_field(data, 'transaction_date'),
            notes=data.get('notes'),
            created_by=data.get('created_by'),
        )
    except _REJECTIONS as exc:
        return _error_response(exc)
    return APIResponse.success(result.to_dict(), message='Transfer recorded', status_code=201)


@diesel_api_bp.route('/transactions/mark-transfer', methods=['POST'])
def mark_transfer():
    data = APIResponse.handle_request_content()
    try:
        result = TransferService().mark_transfer(
            consumption_id=data.get('consumption_id'),
            entry_id=data.get('entry_id'),
            to_warehouse_id=data.get('to_warehouse_id'),
            preserve_price=_as_bool(data.get('preserve_price'), default=True),
        )
    except _REJECTIONS as exc:
        return _error_response(exc)
    return APIResponse.success(result.to_dict(), message='Transactions marked as transfer')


@diesel_api_bp.route('/transactions/fix-transfer-price', methods=['POST'])
def fix_transfer_price():
    """Fill missing transfer-in prices, one by entry id or all with fix_all"""
    data = APIResponse.handle_request_content()
    service = TransferService()
    try:
        if _as_bool(data.get('fix_all')):
            report = service.fix_all_transfer_prices()
            return APIResponse.success(report.to_dict(), message='Transfer prices repaired')

        if data.get('entry_id') is None:
            raise _BadField('entry_id', 'Provide entry_id or fix_all')
        outcome = service.fix_transfer_price(data.get('entry_id'))
    except _REJECTIONS as exc:
        return _error_response(exc)

    message = 'Transfer already priced' if outcome.already_priced else 'Transfer price fixed'
    return APIResponse.success(outcome.to_dict(), message=message)


@diesel_api_bp.route('/reports/consumption-costs', methods=['GET'])
def consumption_costs_report():
    try:
        date_from = _date_arg('date_from')
        date_to = _date_arg('date_to')
        if date_to < date_from:
            raise _BadField('date_to', 'date_to must not be before date_from')
        plant_codes = [code.strip() for code in request.args.get('plant_codes', '').split(',') if code.strip()]

        report = ConsumptionCostReport.build(
            date_from,
            date_to,
            plant_codes or None,
            product_type=request.args.get('product_type', 'diesel'),
        )
    except _REJECTIONS as exc:
        return _error_response(exc)
    return APIResponse.success(report.to_dict())
