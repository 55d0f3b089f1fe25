from datetime import date

from ..extensions import db
from .base import TimestampMixin


class Patient(db.Model, TimestampMixin):
    __tablename__ = "patients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    date_of_birth = db.Column(db.Date)
    patient_number = db.Column(db.String(50), unique=True)  # MRN / agency id
    address = db.Column(db.Text)
    phone = db.Column(db.String(40))
    emergency_contact = db.Column(db.String(255))
    diagnosis = db.Column(db.Text)

    notes = db.relationship("Note", back_populates="patient")

    def age(self, today=None):
        if not self.date_of_birth:
            return None
        today = today or date.today()
        dob = self.date_of_birth
        years = today.year - dob.year
        if (today.month, today.day) < (dob.month, dob.day):
            years -= 1
        return years

    def context_line(self):
        """One-line snapshot used to bias the Section G extraction prompt."""
        age = self.age()
        return f"Patient: {self.name}, Age: {age if age is not None else 'unknown'}, Diagnosis: {self.diagnosis or 'unknown'}"

    def __repr__(self) -> str:
        return f"<Patient id={self.id} name={self.name!r}>"
