from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


ROLE_USER = "USER"
ROLE_VENDOR_ADMIN = "VENDOR_ADMIN"
ROLE_RIDER = "RIDER"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"

VALID_ROLES = frozenset({ROLE_USER, ROLE_VENDOR_ADMIN, ROLE_RIDER, ROLE_SUPER_ADMIN})


class User(db.Model):
    """
    Account referenced by orders, carts and ledger rows.

    Credentials and token issuance live in the external auth service; this
    table only keeps what the order core needs to attribute work.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    role = db.Column(db.String(32), nullable=False, default=ROLE_USER, index=True)

    # Set for VENDOR_ADMIN and RIDER accounts
    vendor_id = db.Column(db.Integer, db.ForeignKey("vendors.id"), nullable=True, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "vendor_id": self.vendor_id,
            "branch_id": self.branch_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
