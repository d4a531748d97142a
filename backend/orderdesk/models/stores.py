from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z, to_clock


class Store(db.Model):
    """
    Store that receives orders.

    WHY: Every order, product, customer and cash register session is scoped
    to exactly one store. is_active is the manual "accepting orders" switch
    operators flip when the shop stops taking orders.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("slug", name="uq_stores_slug"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    display_name = db.Column(db.String(120), nullable=True)
    slug = db.Column(db.String(64), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True)

    # Delivery partner number used for the courier hand-off message
    courier_phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "slug": self.slug,
            "phone": self.phone,
            "courier_phone": self.courier_phone,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class StoreOperatingHours(db.Model):
    """
    Weekly opening schedule.

    day_of_week follows the storefront convention: 0 = Sunday .. 6 = Saturday.
    Times are store-local wall-clock values.
    """
    __tablename__ = "store_operating_hours"
    __table_args__ = (
        db.UniqueConstraint("store_id", "day_of_week", name="uq_store_hours_store_day"),
        db.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_store_hours_day_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    day_of_week = db.Column(db.Integer, nullable=False)
    is_open = db.Column(db.Boolean, nullable=False, default=True)
    open_time = db.Column(db.Time, nullable=True)
    close_time = db.Column(db.Time, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("operating_hours", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "day_of_week": self.day_of_week,
            "is_open": self.is_open,
            "open_time": to_clock(self.open_time),
            "close_time": to_clock(self.close_time),
        }


class StoreSpecialDay(db.Model):
    """
    Date-specific override of the weekly schedule (holidays, events).

    An override always wins over the weekly entry for the same date.
    """
    __tablename__ = "store_special_days"
    __table_args__ = (
        db.UniqueConstraint("store_id", "date", name="uq_store_special_days_store_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    is_open = db.Column(db.Boolean, nullable=False, default=False)
    open_time = db.Column(db.Time, nullable=True)
    close_time = db.Column(db.Time, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("special_days", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "date": self.date.isoformat() if self.date else None,
            "is_open": self.is_open,
            "open_time": to_clock(self.open_time),
            "close_time": to_clock(self.close_time),
        }


class StoreConfig(db.Model):
    __tablename__ = "store_configs"
    __table_args__ = (
        db.UniqueConstraint("store_id", "key", name="uq_store_configs_store_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("configs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "key": self.key,
            "value": self.value,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
