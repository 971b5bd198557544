# --- storefront/model/user.py ---

from sqlalchemy.sql import func
from ..extensions import db


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(180), nullable=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    role = db.Column(db.String(50), nullable=False, default="user", index=True)  # user, manager, admin
    created_at = db.Column(db.DateTime, server_default=func.now())
