"""initial procurement schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates organizations, accounts, RFP requests, market requests,
proposals and the audit log.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name, *values):
    # VARCHAR-backed, matching the ORM's native_enum=False columns
    return sa.Enum(*values, name=name, native_enum=False)


def _account_columns():
    return [
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('hashed_password', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('login_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lock_until', sa.DateTime(timezone=True)),
        sa.Column('last_login', sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    # Organizations
    op.create_table('organizations',
        sa.Column('id', sa.String(24), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('industry', sa.String(100), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('address', sa.JSON()),
        sa.Column('contact', sa.JSON()),
        sa.Column('admin_id', sa.String(24)),
        sa.Column('registration_number', sa.String(100)),
        sa.Column('tax_id', sa.String(100)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('settings', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('uq_organizations_name_lower', 'organizations', [sa.text('lower(name)')], unique=True)

    # Users
    op.create_table('users',
        sa.Column('id', sa.String(24), primary_key=True),
        *_account_columns(),
        sa.Column('first_name', sa.String(50), nullable=False),
        sa.Column('last_name', sa.String(50), nullable=False),
        sa.Column('phone', sa.String(50)),
        sa.Column('department', sa.String(100)),
        sa.Column('role', _enum('userrole', 'user', 'manager', 'admin'), nullable=False, server_default='user'),
        sa.Column('organization_id', sa.String(24), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('manager_id', sa.String(24), sa.ForeignKey('users.id')),
        sa.Column('permissions', sa.JSON()),
        sa.Column('is_email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])

    # Vendors
    op.create_table('vendors',
        sa.Column('id', sa.String(24), primary_key=True),
        *_account_columns(),
        sa.Column('first_name', sa.String(50), nullable=False),
        sa.Column('last_name', sa.String(50), nullable=False),
        sa.Column('company_name', sa.String(200)),
        sa.Column('phone', sa.String(50)),
        sa.Column('specialization', sa.JSON()),
        sa.Column('location', sa.JSON()),
        sa.Column('rating', sa.Float(), server_default='0'),
        sa.Column('total_proposals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accepted_proposals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejected_proposals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_vendors_email', 'vendors', ['email'], unique=True)

    # RFP requests
    op.create_table('rfp_requests',
        sa.Column('id', sa.String(24), primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('requested_by_id', sa.String(24), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('organization_id', sa.String(24), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('manager_id', sa.String(24), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', _enum('rfpstatus', 'pending', 'approved', 'rejected', 'needs_clarification', 'converted_to_market'), nullable=False, server_default='pending'),
        sa.Column('urgency', _enum('urgency', 'low', 'medium', 'high', 'urgent'), nullable=False, server_default='medium'),
        sa.Column('specifications', sa.JSON()),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('budget_estimate', sa.Float()),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('justification', sa.Text(), nullable=False),
        sa.Column('expected_delivery_date', sa.Date()),
        sa.Column('manager_notes', sa.Text()),
        sa.Column('clarification_notes', sa.Text()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('reviewed_at', sa.DateTime(timezone=True)),
        sa.Column('market_request_id', sa.String(24)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_rfp_requests_requested_by_id', 'rfp_requests', ['requested_by_id'])
    op.create_index('ix_rfp_requests_manager_id', 'rfp_requests', ['manager_id'])
    op.create_index('ix_rfp_requests_org_status', 'rfp_requests', ['organization_id', 'status'])

    # Market requests
    op.create_table('market_requests',
        sa.Column('id', sa.String(24), primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('rfp_request_id', sa.String(24), sa.ForeignKey('rfp_requests.id'), nullable=False, unique=True),
        sa.Column('created_by_id', sa.String(24), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('organization_id', sa.String(24), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('status', _enum('marketrequeststatus', 'open', 'closed', 'awarded', 'cancelled'), nullable=False, server_default='open'),
        sa.Column('specifications', sa.JSON()),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('max_budget', sa.Float()),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('deadline', sa.DateTime(timezone=True), nullable=False),
        sa.Column('delivery_location', sa.JSON()),
        sa.Column('requirements', sa.JSON()),
        sa.Column('evaluation_criteria', sa.JSON()),
        sa.Column('proposals_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('views_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('winning_proposal_id', sa.String(24)),
        sa.Column('closed_at', sa.DateTime(timezone=True)),
        sa.Column('awarded_at', sa.DateTime(timezone=True)),
        sa.Column('cancellation_reason', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_market_requests_org_status', 'market_requests', ['organization_id', 'status'])
    op.create_index('ix_market_requests_deadline_status', 'market_requests', ['deadline', 'status'])

    # Interested vendors
    op.create_table('interested_vendors',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('market_request_id', sa.String(24), sa.ForeignKey('market_requests.id'), nullable=False),
        sa.Column('vendor_id', sa.String(24), sa.ForeignKey('vendors.id'), nullable=False),
        sa.Column('viewed_at', sa.DateTime(timezone=True)),
        sa.Column('is_interested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('market_request_id', 'vendor_id', name='uq_interested_vendor_mr_vendor'),
    )

    # Proposals
    op.create_table('proposals',
        sa.Column('id', sa.String(24), primary_key=True),
        sa.Column('market_request_id', sa.String(24), sa.ForeignKey('market_requests.id'), nullable=False),
        sa.Column('vendor_id', sa.String(24), sa.ForeignKey('vendors.id'), nullable=False),
        sa.Column('proposed_item', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('specifications', sa.JSON()),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Float(), nullable=False),
        sa.Column('total_price', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('delivery_time', sa.String(100), nullable=False),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('warranty', sa.JSON()),
        sa.Column('additional_services', sa.JSON()),
        sa.Column('status', _enum('proposalstatus', 'draft', 'submitted', 'under_review', 'accepted', 'rejected', 'withdrawn'), nullable=False, server_default='draft'),
        sa.Column('evaluation', sa.JSON(none_as_null=True)),
        sa.Column('ai_evaluation', sa.JSON(none_as_null=True)),
        sa.Column('compliance_documents', sa.JSON()),
        sa.Column('vendor_notes', sa.Text()),
        sa.Column('manager_notes', sa.Text()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
        sa.Column('reviewed_at', sa.DateTime(timezone=True)),
        sa.Column('accepted_at', sa.DateTime(timezone=True)),
        sa.Column('rejected_at', sa.DateTime(timezone=True)),
        sa.Column('withdrawn_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('market_request_id', 'vendor_id', name='uq_proposal_mr_vendor'),
    )
    op.create_index('ix_proposals_vendor_status', 'proposals', ['vendor_id', 'status'])
    op.create_index('ix_proposals_mr_status', 'proposals', ['market_request_id', 'status'])

    # Audit logs
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('timestamp', sa.DateTime(timezone=True)),
        sa.Column('actor_id', sa.String(24)),
        sa.Column('actor_kind', sa.String(16)),
        sa.Column('organization_id', sa.String(24), sa.ForeignKey('organizations.id')),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100)),
        sa.Column('entity_id', sa.String(24)),
        sa.Column('details', sa.JSON()),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_org_timestamp', 'audit_logs', ['organization_id', 'timestamp'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('proposals')
    op.drop_table('interested_vendors')
    op.drop_table('market_requests')
    op.drop_table('rfp_requests')
    op.drop_table('vendors')
    op.drop_table('users')
    op.drop_index('uq_organizations_name_lower', table_name='organizations')
    op.drop_table('organizations')
