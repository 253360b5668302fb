from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z
from .common import new_concurrency_stamp


class Vendor(db.Model):
    """Seller organization. Owns branches, catalog and stock."""
    __tablename__ = "vendors"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_vendors_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def __repr__(self) -> str:
        return f"<Vendor id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "status": self.status,
            "concurrency_stamp": self.concurrency_stamp,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Branch(db.Model):
    """Physical fulfilment location of a vendor. Orders are placed against one branch."""
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("vendor_id", "code", name="uq_branches_vendor_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)

    concurrency_stamp = db.Column(db.String(32), nullable=False)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    vendor = db.relationship("Vendor", backref=db.backref("branches", lazy=True))
    __mapper_args__ = {"version_id_col": concurrency_stamp, "version_id_generator": new_concurrency_stamp}

    def __repr__(self) -> str:
        return f"<Branch id={self.id} vendor_id={self.vendor_id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "vendor_id": self.vendor_id,
            "name": self.name,
            "code": self.code,
            "status": self.status,
            "concurrency_stamp": self.concurrency_stamp,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
