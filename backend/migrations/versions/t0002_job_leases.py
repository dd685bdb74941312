"""job leases

Revision ID: t0002_job_leases
Revises: t0001_initial
Create Date: 2026-10-18 12:00:00.000000

Adds job_leases: one row per background job name, holding the token of the
run that currently owns it. Used as a cross-process single-flight guard for
segmentation recomputes.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 't0002_job_leases'
down_revision = 't0001_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'job_leases',
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('holder', sa.String(64), nullable=True),
        sa.Column('acquired_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('name'),
    )


def downgrade():
    op.drop_table('job_leases')
