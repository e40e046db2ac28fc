from datetime import datetime

from pambo.extensions import db


class Listing(db.Model):
    __tablename__ = "listings"

    id = db.Column(db.Integer, primary_key=True)

    # Seller user id
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    title = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True, index=True)

    # Marketplace vertical (marketplace, wholesale, secondhand, ...)
    hub = db.Column(db.String(32), nullable=False, default="marketplace", server_default="marketplace", index=True)
    status = db.Column(db.String(16), nullable=False, default="active", server_default="active", index=True)

    # Kenya location filters
    county = db.Column(db.String(64), nullable=True, index=True)
    town = db.Column(db.String(64), nullable=True)

    price = db.Column(db.Float, nullable=False, default=0.0)
    views = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    created_at = db.Column(db.DateTime, nullable=True, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "title": self.title or "",
            "description": self.description or "",
            "category": self.category or "",
            "hub": self.hub or "marketplace",
            "status": self.status or "active",
            "county": self.county or "",
            "town": self.town or "",
            "price": float(self.price or 0.0),
            "views": int(self.views or 0),
            "seller_id": int(self.seller_id) if self.seller_id is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
