from __future__ import annotations

from ..extensions import db
from ..money import decimal_str
from valuation.time_utils import to_utc_z


TREND_RISING = "rising"
TREND_STABLE = "stable"
TREND_DECLINING = "declining"

BATCH_STATUS_PENDING = "pending"
BATCH_STATUS_RUNNING = "running"
BATCH_STATUS_COMPLETED = "completed"
BATCH_STATUS_FAILED = "failed"


class ProductProfitabilitySnapshot(db.Model):
    """
    Recomputed per-product profitability for a trailing window.

    Entirely derived: one row per (store, product, period_days), overwritten
    by every batch run. Safe to drop and recompute.
    """
    __tablename__ = "product_profitability_snapshots"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", "period_days", name="uq_profitability_store_product_period"),
        db.Index("ix_profitability_store_profit", "store_id", "total_profit"),
        db.Index("ix_profitability_store_velocity", "store_id", "sale_velocity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    period_days = db.Column(db.Integer, nullable=False, default=30)

    units_sold = db.Column(db.Integer, nullable=False, default=0)
    gross_revenue = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    refunded_amount = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    refunded_quantity = db.Column(db.Integer, nullable=False, default=0)
    net_revenue = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    gross_cost = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    net_cost = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    total_profit = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    profit_margin = db.Column(db.Numeric(10, 4), nullable=False, default=0)
    avg_profit_per_unit = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    sale_velocity = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    current_quantity = db.Column(db.Integer, nullable=False, default=0)
    days_to_stockout = db.Column(db.Integer, nullable=True)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    removal_count = db.Column(db.Integer, nullable=False, default=0)
    removal_loss_value = db.Column(db.Numeric(18, 2), nullable=False, default=0)

    trend = db.Column(db.String(16), nullable=False, default=TREND_STABLE)
    computed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "period_days": self.period_days,
            "units_sold": self.units_sold,
            "gross_revenue": decimal_str(self.gross_revenue),
            "refunded_amount": decimal_str(self.refunded_amount),
            "refunded_quantity": self.refunded_quantity,
            "net_revenue": decimal_str(self.net_revenue),
            "gross_cost": decimal_str(self.gross_cost),
            "net_cost": decimal_str(self.net_cost),
            "total_profit": decimal_str(self.total_profit),
            "profit_margin": decimal_str(self.profit_margin),
            "avg_profit_per_unit": decimal_str(self.avg_profit_per_unit),
            "sale_velocity": decimal_str(self.sale_velocity),
            "current_quantity": self.current_quantity,
            "days_to_stockout": self.days_to_stockout,
            "min_stock_level": self.min_stock_level,
            "removal_count": self.removal_count,
            "removal_loss_value": decimal_str(self.removal_loss_value),
            "trend": self.trend,
            "computed_at": to_utc_z(self.computed_at),
        }


class BatchRun(db.Model):
    """
    One execution of a per-store batch job.

    LIFECYCLE: pending -> running -> completed | failed

    At most one run per (store, job_type) may be pending/running at a time.
    A failed run keeps its error_message; the next scheduled run retries.
    """
    __tablename__ = "batch_runs"
    __table_args__ = (
        db.Index("ix_batch_runs_store_job_created", "store_id", "job_type", "created_at"),
        db.Index("ix_batch_runs_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    job_type = db.Column(db.String(32), nullable=False, default="profitability")
    period_days = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BATCH_STATUS_PENDING)
    snapshots_written = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "job_type": self.job_type,
            "period_days": self.period_days,
            "status": self.status,
            "snapshots_written": self.snapshots_written,
            "error_message": self.error_message,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
        }
