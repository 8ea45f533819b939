"""
KO Assets Rights Review Service
User permission configuration model.

Models:
    - User: configured portal account with its raw permission tokens
"""

from datetime import datetime, timezone

from koassets.models import db


class User(db.Model):
    """
    Configured portal user.

    Only users with at least one permission need a row; an authenticated
    user without a row simply resolves to no capabilities. ``permissions``
    holds the tokens exactly as configured (aliases included) so the
    permission sheet can be round-tripped.
    """

    __tablename__ = "users"

    email = db.Column(db.String(254), primary_key=True, comment="Lower-case email")
    name = db.Column(db.String(200), default="")
    permissions = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @staticmethod
    def normalize_email(email):
        return (email or "").strip().lower()

    @classmethod
    def get_by_email(cls, email):
        email = cls.normalize_email(email)
        if not email:
            return None
        return db.session.get(cls, email)

    def to_dict(self):
        return {
            "email": self.email,
            "name": self.name,
            "permissions": list(self.permissions or []),
        }

    def __repr__(self):
        return f"<User {self.email}: {','.join(self.permissions or [])}>"
