from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class DieselProduct(db.Model):
    """Fungible liquid commodity tracked in liters (diesel, urea)."""
    __tablename__ = 'diesel_products'

    id = db.Column(db.Integer, primary_key=True)
    product_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    product_type = db.Column(db.String(32), nullable=False, index=True)  # 'diesel' | 'urea'

    # Only used by the period report when a warehouse has no priced history
    reference_price = db.Column(db.Float, nullable=True)

    def __repr__(self):
        return f'<DieselProduct {self.product_code} ({self.product_type})>'


class DieselWarehouse(db.Model):
    """Per-plant storage tank for a single product type."""
    __tablename__ = 'diesel_warehouses'

    id = db.Column(db.Integer, primary_key=True)
    warehouse_code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)

    plant_code = db.Column(db.String(32), nullable=False, index=True)
    plant_name = db.Column(db.String(128), nullable=True)
    product_type = db.Column(db.String(32), nullable=False, default='diesel')

    # Denormalized balance; also the row locked while a withdrawal is costed and written
    current_inventory = db.Column(db.Float, nullable=False, default=0.0)
    last_updated = db.Column(db.DateTime, nullable=True, default=TimezoneUtils.utc_now)

    def apply_delta(self, liters: float) -> tuple[float, float]:
        """Move the balance by ``liters``; returns (previous, current)."""
        previous = float(self.current_inventory or 0.0)
        current = previous + liters
        self.current_inventory = current
        self.last_updated = TimezoneUtils.utc_now()
        return previous, current

    def __repr__(self):
        return f'<DieselWarehouse {self.warehouse_code} plant={self.plant_code} {self.current_inventory}L>'
