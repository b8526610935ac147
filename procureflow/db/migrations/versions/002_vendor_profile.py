"""Add vendor profile fields

Revision ID: 002_vendor_profile
Revises: 001_initial
Create Date: 2026-10-17

Adds the self-managed parts of a vendor's directory entry:
- description: free-text company profile
- certifications, portfolio: lists shown to buying organizations
- preferences: notification and category preferences
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_vendor_profile'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('vendors', sa.Column('description', sa.Text(), nullable=True))
    op.add_column('vendors', sa.Column('certifications', sa.JSON(), nullable=True))
    op.add_column('vendors', sa.Column('portfolio', sa.JSON(), nullable=True))
    op.add_column('vendors', sa.Column('preferences', sa.JSON(), nullable=True))


def downgrade() -> None:
    op.drop_column('vendors', 'preferences')
    op.drop_column('vendors', 'portfolio')
    op.drop_column('vendors', 'certifications')
    op.drop_column('vendors', 'description')
