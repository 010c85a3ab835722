"""
ORIS Backend
User domain model.

Models:
    - User: employee account with profile, health data and gamification score
"""

from datetime import date, datetime, timezone

from oris.models import db


# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = {"user", "admin"}
GENDERS = {"masculino", "feminino", "outro"}
SLEEP_QUALITIES = {"excelente", "boa", "regular", "precária"}
MOODS = {"excelente", "bom", "instável", "ruim"}


def calculate_age(birth_date, today=None):
    """Age in whole years at ``today`` (defaults to the current date)."""
    if not birth_date:
        return None
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def calculate_bmi(weight, height):
    """Body-mass index (kg / m²) rounded to 2 decimals, or None."""
    if not weight or not height or height <= 0:
        return None
    return round(weight / (height * height), 2)


class User(db.Model):
    """
    Platform user.

    ``role`` is either ``user`` or ``admin``; admins receive the
    administrative notifications (critical risks, overdue plans).
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    birth_date = db.Column(db.Date, nullable=True)
    phone = db.Column(db.String(30), default="")
    role = db.Column(db.String(20), default="user", index=True)
    company = db.Column(db.String(150), default="")
    department = db.Column(db.String(150), default="")
    position = db.Column(db.String(150), default="")
    gender = db.Column(db.String(20), nullable=True)

    # Health data
    weight = db.Column(db.Float, nullable=True, comment="kg")
    height = db.Column(db.Float, nullable=True, comment="m")
    blood_pressure_systolic = db.Column(db.Integer, nullable=True)
    blood_pressure_diastolic = db.Column(db.Integer, nullable=True)
    last_checkup = db.Column(db.Date, nullable=True)
    sleep_quality = db.Column(db.String(20), default="boa")
    mood = db.Column(db.String(20), default="bom")
    flu_symptoms = db.Column(db.Boolean, default=False)

    # Gamification
    score = db.Column(db.Integer, default=0, nullable=False, index=True)

    # Privacy
    share_health_data = db.Column(db.Boolean, default=False)
    share_activity = db.Column(db.Boolean, default=False)

    refresh_token_hash = db.Column(db.String(64), nullable=True)
    last_login = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_admin(self):
        return self.role == "admin"

    def health_data(self):
        return {
            "weight": self.weight,
            "height": self.height,
            "blood_pressure": {
                "systolic": self.blood_pressure_systolic,
                "diastolic": self.blood_pressure_diastolic,
            },
            "last_checkup": self.last_checkup.isoformat() if self.last_checkup else None,
            "sleep_quality": self.sleep_quality,
            "mood": self.mood,
            "flu_symptoms": bool(self.flu_symptoms),
        }

    def public_profile(self):
        """Profile view shown to the user themself (no credentials)."""
        return {
            "id": self.id,
            "name": self.name,
            "age": calculate_age(self.birth_date),
            "gender": self.gender,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "score": self.score or 0,
            "weight": self.weight,
            "height": self.height,
            "bmi": calculate_bmi(self.weight, self.height),
            "sleep_quality": self.sleep_quality or "boa",
            "mood": self.mood or "bom",
            "flu_symptoms": bool(self.flu_symptoms),
            "department": self.department or None,
            "company": self.company or None,
            "position": self.position or None,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "company": self.company,
            "department": self.department,
            "position": self.position,
            "gender": self.gender,
            "health_data": self.health_data(),
            "score": self.score or 0,
            "privacy_settings": {
                "share_health_data": bool(self.share_health_data),
                "share_activity": bool(self.share_activity),
            },
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_summary(self):
        """Compact reference used when embedding a user in other payloads."""
        return {"id": self.id, "name": self.name, "email": self.email}

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
