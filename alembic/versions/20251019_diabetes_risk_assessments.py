"""Diabetes risk assessments

Revision ID: 001_diabetes_risk
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_diabetes_risk'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create diabetes_risk_assessments table
    op.create_table(
        'diabetes_risk_assessments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('patient_id', sa.String(length=64), nullable=False),
        sa.Column('risk_score', sa.Integer(), nullable=False),
        sa.Column('risk_level', sa.String(length=20), nullable=False),
        sa.Column('urgency_level', sa.String(length=20), nullable=False),
        sa.Column('contributing_factors', sa.JSON(), nullable=False),
        sa.Column('recommendations', sa.JSON(), nullable=False),
        sa.Column('next_screening_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('assessed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('assessed_from_version', sa.String(length=50), nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('risk_score >= 0 AND risk_score <= 100', name='ck_diabetes_risk_score_range'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_diabetes_risk_assessments_patient_id'), 'diabetes_risk_assessments', ['patient_id'], unique=False)
    op.create_index(op.f('ix_diabetes_risk_assessments_risk_level'), 'diabetes_risk_assessments', ['risk_level'], unique=False)
    op.create_index(op.f('ix_diabetes_risk_assessments_assessed_at'), 'diabetes_risk_assessments', ['assessed_at'], unique=False)
    op.create_index('ix_diabetes_risk_assessments_patient_current', 'diabetes_risk_assessments', ['patient_id', 'is_current'], unique=False)

    # At most one current assessment per patient
    op.create_index(
        'uq_diabetes_risk_assessments_one_current',
        'diabetes_risk_assessments',
        ['patient_id'],
        unique=True,
        postgresql_where=sa.text('is_current'),
    )


def downgrade() -> None:
    op.drop_index('uq_diabetes_risk_assessments_one_current', table_name='diabetes_risk_assessments')
    op.drop_index('ix_diabetes_risk_assessments_patient_current', table_name='diabetes_risk_assessments')
    op.drop_index(op.f('ix_diabetes_risk_assessments_assessed_at'), table_name='diabetes_risk_assessments')
    op.drop_index(op.f('ix_diabetes_risk_assessments_risk_level'), table_name='diabetes_risk_assessments')
    op.drop_index(op.f('ix_diabetes_risk_assessments_patient_id'), table_name='diabetes_risk_assessments')
    op.drop_table('diabetes_risk_assessments')
