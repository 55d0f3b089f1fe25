"""Initial schema: patients, notes, oasis_section_g

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-17 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

# (column, max score) in form order
SECTION_G_COLUMNS = [
    ('m1800_grooming', 3),
    ('m1810_dress_upper', 3),
    ('m1820_dress_lower', 3),
    ('m1830_bathing', 4),
    ('m1840_toilet_transfer', 3),
    ('m1845_toileting_hygiene', 3),
    ('m1850_transferring', 5),
    ('m1860_ambulation', 6),
]


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        'patients',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('date_of_birth', sa.Date()),
        sa.Column('patient_number', sa.String(50), unique=True),
        sa.Column('address', sa.Text()),
        sa.Column('phone', sa.String(40)),
        sa.Column('emergency_contact', sa.String(255)),
        sa.Column('diagnosis', sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        'notes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('patient_id', sa.Integer(), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('audio_storage', sa.String(10)),
        sa.Column('audio_key', sa.String(512)),
        sa.Column('transcription', sa.Text()),
        sa.Column('summary', sa.Text()),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        *_timestamps(),
    )
    op.create_index('ix_notes_patient_id', 'notes', ['patient_id'])
    op.create_index('ix_notes_status', 'notes', ['status'])

    op.create_table(
        'oasis_section_g',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('note_id', sa.Integer(), sa.ForeignKey('notes.id', ondelete='CASCADE'), nullable=False),
        *[sa.Column(name, sa.SmallInteger()) for name, _ in SECTION_G_COLUMNS],
        *_timestamps(),
        *[
            sa.CheckConstraint(
                f'{name} IS NULL OR ({name} >= 0 AND {name} <= {maximum})',
                name=f'ck_section_g_{name[:5]}_range',
            )
            for name, maximum in SECTION_G_COLUMNS
        ],
    )
    op.create_index('ix_oasis_section_g_note_id', 'oasis_section_g', ['note_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_oasis_section_g_note_id', table_name='oasis_section_g')
    op.drop_table('oasis_section_g')
    op.drop_index('ix_notes_status', table_name='notes')
    op.drop_index('ix_notes_patient_id', table_name='notes')
    op.drop_table('notes')
    op.drop_table('patients')
