from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class CashRegisterSession(db.Model):
    """
    Till session of a store.

    WHY: Orders accumulate on the open session and are reconciled when the
    operator closes it.

    LIFECYCLE:
    - OPEN: closed_at is NULL; at most one per store (partial unique index)
    - CLOSED: closed_at set, totals persisted; never reopened

    final_amount_cents is the expected drawer balance at close:
    initial_amount_cents + total_sales_cents.
    """
    __tablename__ = "cash_register_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_register_sessions_one_open_per_store",
            "store_id",
            unique=True,
            sqlite_where=db.text("closed_at IS NULL"),
            postgresql_where=db.text("closed_at IS NULL"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    opened_by = db.Column(db.Integer, nullable=True)
    closed_by = db.Column(db.Integer, nullable=True)

    # Cash tracking (all amounts in cents)
    initial_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_sales_cents = db.Column(db.Integer, nullable=True)  # Set when closing
    final_amount_cents = db.Column(db.Integer, nullable=True)  # Set when closing

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("cash_register_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "opened_by": self.opened_by,
            "closed_by": self.closed_by,
            "status": "OPEN" if self.is_open else "CLOSED",
            "initial_amount_cents": self.initial_amount_cents,
            "total_sales_cents": self.total_sales_cents,
            "final_amount_cents": self.final_amount_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }
