from ..extensions import db
from ..services.section_g import SECTION_G_FIELDS, FIELD_ATTRS, completion_percentage
from .base import TimestampMixin


class SectionG(db.Model, TimestampMixin):
    """OASIS Section G scores for one note (at most one row per note)."""

    __tablename__ = "oasis_section_g"

    id = db.Column(db.Integer, primary_key=True)
    note_id = db.Column(db.Integer, db.ForeignKey("notes.id", ondelete="CASCADE"),
                        nullable=False, unique=True, index=True)

    # NULL = not assessed
    m1800_grooming = db.Column(db.SmallInteger)
    m1810_dress_upper = db.Column(db.SmallInteger)
    m1820_dress_lower = db.Column(db.SmallInteger)
    m1830_bathing = db.Column(db.SmallInteger)
    m1840_toilet_transfer = db.Column(db.SmallInteger)
    m1845_toileting_hygiene = db.Column(db.SmallInteger)
    m1850_transferring = db.Column(db.SmallInteger)
    m1860_ambulation = db.Column(db.SmallInteger)

    note = db.relationship("Note", back_populates="section_g")

    __table_args__ = tuple(
        db.CheckConstraint(
            f"{f.attr} IS NULL OR ({f.attr} >= {f.scale.minimum()} AND {f.attr} <= {f.scale.maximum()})",
            name=f"ck_section_g_{f.code.lower()}_range",
        )
        for f in SECTION_G_FIELDS
    )

    @classmethod
    def upsert_for_note(cls, note_id, scores):
        """Create the row for ``note_id`` or overwrite every field of it.

        ``scores`` maps attr -> int | None; values are re-checked against
        each item's range so nothing out of range reaches the table. The
        caller commits.
        """
        row = cls.query.filter_by(note_id=note_id).one_or_none()
        if row is None:
            row = cls(note_id=note_id)
            db.session.add(row)
        for f in SECTION_G_FIELDS:
            setattr(row, f.attr, f.scale.coerce(scores.get(f.attr)))
        return row

    def scores(self):
        return {attr: getattr(self, attr) for attr in FIELD_ATTRS}

    @property
    def completion_percentage(self):
        return completion_percentage(self.scores())

    @property
    def is_complete(self):
        return all(v is not None for v in self.scores().values())

    def fields_with_descriptions(self):
        out = {}
        for f in SECTION_G_FIELDS:
            value = getattr(self, f.attr)
            out[f.code] = {
                "label": f.label,
                "value": value,
                "description": f.scale(value).description if value is not None else None,
            }
        return out

    def to_dict(self):
        return {
            "id": self.id,
            "note_id": self.note_id,
            "fields": self.fields_with_descriptions(),
            "completion_percentage": self.completion_percentage,
            "is_complete": self.is_complete,
        }

    def __repr__(self) -> str:
        return f"<SectionG id={self.id} note_id={self.note_id} complete={self.completion_percentage}%>"
