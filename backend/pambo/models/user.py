from datetime import datetime

from pambo.extensions import db


ACCOUNT_STATUSES = ("pending", "active", "suspended")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=True)

    verified = db.Column(db.Boolean, nullable=False, default=False)
    # pending | active | suspended
    account_status = db.Column(db.String(16), nullable=False, default="pending", server_default="pending")

    join_date = db.Column(db.DateTime, nullable=True, default=datetime.utcnow)

    def to_seller_dict(self) -> dict:
        return {
            "id": int(self.id),
            "verified": bool(self.verified),
            "account_status": self.account_status or "pending",
            "join_date": self.join_date.isoformat() if self.join_date else None,
        }
