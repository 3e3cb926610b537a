from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils

ENTRY = 'entry'
CONSUMPTION = 'consumption'
TRANSACTION_TYPES = (ENTRY, CONSUMPTION)


class DieselTransaction(db.Model):
    """Append-only ledger row for one deposit or withdrawal at a warehouse.

    Withdrawals never carry a unit cost, except transfer-out legs which keep
    the computed cost for audit. Those rows are excluded from FIFO replay.
    """
    __tablename__ = 'diesel_transactions'

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(64), nullable=True, index=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey('diesel_warehouses.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('diesel_products.id'), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False)

    quantity_liters = db.Column(db.Float, nullable=False)
    unit_cost = db.Column(db.Float, nullable=True)
    total_cost = db.Column(db.Float, nullable=True)

    previous_balance = db.Column(db.Float, nullable=True)
    current_balance = db.Column(db.Float, nullable=True)

    transaction_date = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now)

    # Transfer pairing
    is_transfer = db.Column(db.Boolean, nullable=False, default=False)
    reference_transaction_id = db.Column(db.Integer, db.ForeignKey('diesel_transactions.id'), nullable=True)

    asset_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    source_system = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=TimezoneUtils.utc_now)

    # Relationships
    warehouse = db.relationship('DieselWarehouse', foreign_keys=[warehouse_id], backref='transactions')
    product = db.relationship('DieselProduct', foreign_keys=[product_id])
    reference_transaction = db.relationship('DieselTransaction', remote_side=[id], post_update=True)

    __table_args__ = (
        db.CheckConstraint('quantity_liters > 0', name='check_quantity_liters_positive'),
        db.CheckConstraint(
            "transaction_type IN ('entry', 'consumption')", name='check_transaction_type_valid'
        ),
        db.Index('idx_diesel_tx_window', 'warehouse_id', 'product_id', 'transaction_date'),
        db.Index('idx_diesel_tx_type', 'transaction_type'),
    )

    @property
    def is_entry(self) -> bool:
        return self.transaction_type == ENTRY

    @property
    def has_price(self) -> bool:
        return self.unit_cost is not None and float(self.unit_cost) > 0

    def assign_price(self, unit_cost: float) -> None:
        self.unit_cost = unit_cost
        self.total_cost = unit_cost * float(self.quantity_liters)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'warehouse_id': self.warehouse_id,
            'product_id': self.product_id,
            'transaction_type': self.transaction_type,
            'quantity_liters': self.quantity_liters,
            'unit_cost': self.unit_cost,
            'total_cost': self.total_cost,
            'previous_balance': self.previous_balance,
            'current_balance': self.current_balance,
            'transaction_date': self.transaction_date.isoformat() if self.transaction_date else None,
            'is_transfer': bool(self.is_transfer),
            'reference_transaction_id': self.reference_transaction_id,
            'asset_id': self.asset_id,
            'notes': self.notes,
        }

    def __repr__(self):
        return f'<DieselTransaction {self.id} | WH {self.warehouse_id} | {self.transaction_type}: {self.quantity_liters}L>'
