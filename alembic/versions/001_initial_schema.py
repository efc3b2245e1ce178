"""001 – Initial schema: every table, index and enum type of the ORM models.

Subscription plans are created on first use by
``BillingService.ensure_default_plans``; no seed rows are written here.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

from alembic import op

from backend.models import metadata

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    metadata.drop_all(bind=op.get_bind())
