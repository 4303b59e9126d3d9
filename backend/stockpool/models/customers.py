from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data, scoped to a company.

    LOOKUP KEYS:
    name_key, phone_key and id_number_key hold the normalized forms used for
    identity resolution. name_key is trimmed and lowercased, with inner
    spacing kept; phone_key and id_number_key have all whitespace removed
    (id_number_key is also lowercased). They are indexed but deliberately
    NOT unique: dedup is best-effort.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_company_name_key", "company_id", "name_key"),
        db.Index("ix_customers_company_phone_key", "company_id", "phone_key"),
        db.Index("ix_customers_company_id_number_key", "company_id", "id_number_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    identification_type = db.Column(db.String(32), nullable=True)
    identification_number = db.Column(db.String(64), nullable=True)

    name_key = db.Column(db.String(255), nullable=False)
    phone_key = db.Column(db.String(32), nullable=True)
    id_number_key = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "identification_type": self.identification_type,
            "identification_number": self.identification_number,
            "created_at": to_utc_z(self.created_at),
        }
