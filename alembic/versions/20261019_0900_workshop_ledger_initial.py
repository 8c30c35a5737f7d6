"""Workshop ledger initial schema

Jobs, customers, line items, payments, job number counter, audit log,
shadow audit log and preferences.

Revision ID: 20261019_0900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_0900'
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=12, scale=2), nullable=False, server_default='0')


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _versioning() -> list:
    return [
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create workshop ledger tables."""
    # ===========================================
    # CUSTOMERS
    # ===========================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('company_name', sa.String(255), nullable=True),
        sa.Column('customer_type', sa.String(20), nullable=False, server_default='domestic',
                  comment='domestic or commercial'),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('is_account', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notes', sa.Text(), nullable=True),
        *_versioning(),
        *_timestamps(),
    )
    op.create_index('ix_customers_name', 'customers', ['name'])
    op.create_index('ix_customers_phone', 'customers', ['phone'])
    op.create_index('ix_customers_deleted_at', 'customers', ['deleted_at'])

    # ===========================================
    # JOBS
    # ===========================================
    op.create_table(
        'jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('job_number', sa.String(20), nullable=False, comment='JB<year>-<4-digit sequence>'),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('customers.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('machine_category', sa.String(100), nullable=False),
        sa.Column('machine_brand', sa.String(100), nullable=True),
        sa.Column('machine_model', sa.String(100), nullable=True),
        sa.Column('machine_serial', sa.String(100), nullable=True),
        sa.Column('problem_description', sa.Text(), nullable=False, server_default=''),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('service_performed', sa.Text(), nullable=True),
        sa.Column('recommendations', sa.Text(), nullable=True),
        sa.Column('additional_notes', sa.Text(), nullable=True),
        sa.Column('labour_hours', sa.Numeric(precision=8, scale=2), nullable=False, server_default='0'),
        _money('labour_rate'),
        _money('transport_total_charge'),
        _money('sharpen_total_charge'),
        _money('small_repair_total'),
        sa.Column(
            'discount_type',
            sa.Enum('none', 'percent', 'fixed', name='discounttype'),
            nullable=False,
            server_default='none',
        ),
        _money('discount_value'),
        _money('service_deposit'),
        _money('parts_subtotal'),
        _money('labour_total'),
        _money('subtotal'),
        _money('discount_amount'),
        _money('gst'),
        _money('grand_total'),
        _money('amount_paid'),
        _money('balance_due'),
        sa.Column(
            'status',
            sa.Enum(
                'pending', 'in-progress', 'awaiting_parts', 'awaiting_quote',
                'completed', 'delivered', 'write_off',
                name='jobstatus',
            ),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        *_versioning(),
        *_timestamps(),
    )
    op.create_index('ix_jobs_job_number', 'jobs', ['job_number'], unique=True)
    op.create_index('ix_jobs_customer_id', 'jobs', ['customer_id'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index('ix_jobs_deleted_at', 'jobs', ['deleted_at'])

    op.create_table(
        'job_line_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('job_id', sa.Uuid(), sa.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('part_id', sa.String(64), nullable=True),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('is_custom', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('quantity', sa.Numeric(precision=10, scale=2), nullable=False, server_default='1'),
        _money('unit_price'),
        _money('total_price'),
        *_timestamps(),
    )
    op.create_index('ix_job_line_items_job_id', 'job_line_items', ['job_id'])

    op.create_table(
        'job_payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('job_id', sa.Uuid(), sa.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False),
        _money('amount'),
        sa.Column('method', sa.String(30), nullable=False, server_default='cash'),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('recorded_by', sa.String(100), nullable=True),
        sa.Column('audit_entry_id', sa.BigInteger(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_job_payments_job_id', 'job_payments', ['job_id'])
    op.create_index('ix_job_payments_audit_entry_id', 'job_payments', ['audit_entry_id'])

    op.create_table(
        'job_number_sequences',
        sa.Column('year', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
    )

    # ===========================================
    # AUDIT LOG
    # ===========================================
    op.create_table(
        'audit_log',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('table_name', sa.String(50), nullable=False),
        sa.Column('record_id', sa.String(64), nullable=False),
        sa.Column('record_label', sa.String(50), nullable=True,
                  comment='Human readable key of the target (job number)'),
        sa.Column(
            'operation',
            sa.Enum('INSERT', 'UPDATE', 'DELETE', 'RECOVERY', 'REBUILD', name='auditoperation'),
            nullable=False,
        ),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('changed_fields', sa.JSON(), nullable=False),
        sa.Column('changed_by', sa.String(100), nullable=True),
        sa.Column('source', sa.String(500), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            'review_status',
            sa.Enum('unreviewed', 'accepted', 'rejected', name='reviewstatus'),
            nullable=False,
            server_default='unreviewed',
        ),
        sa.Column('reviewed_by', sa.String(100), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_note', sa.Text(), nullable=True),
    )
    op.create_index('ix_audit_log_table_name', 'audit_log', ['table_name'])
    op.create_index('ix_audit_log_record_id', 'audit_log', ['record_id'])
    op.create_index('ix_audit_log_record_label', 'audit_log', ['record_label'])
    op.create_index('ix_audit_log_operation', 'audit_log', ['operation'])
    op.create_index('ix_audit_log_changed_by', 'audit_log', ['changed_by'])
    op.create_index('ix_audit_log_changed_at', 'audit_log', ['changed_at'])
    op.create_index('ix_audit_log_review_status', 'audit_log', ['review_status'])

    # Only the review columns may change after insert
    op.execute("""
        CREATE OR REPLACE FUNCTION audit_log_guard() RETURNS trigger AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'audit_log is append-only';
            END IF;
            IF NEW.table_name IS DISTINCT FROM OLD.table_name
               OR NEW.record_id IS DISTINCT FROM OLD.record_id
               OR NEW.operation IS DISTINCT FROM OLD.operation
               OR NEW.old_values::text IS DISTINCT FROM OLD.old_values::text
               OR NEW.new_values::text IS DISTINCT FROM OLD.new_values::text
               OR NEW.source IS DISTINCT FROM OLD.source
               OR NEW.changed_at IS DISTINCT FROM OLD.changed_at THEN
                RAISE EXCEPTION 'audit_log entries are immutable except for review columns';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER audit_log_guard_trigger
        BEFORE UPDATE OR DELETE ON audit_log
        FOR EACH ROW EXECUTE FUNCTION audit_log_guard();
    """)

    # ===========================================
    # SHADOW AUDIT LOG
    # ===========================================
    op.create_table(
        'shadow_audit_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'audit_type',
            sa.Enum('customer_relink', 'total_drift', 'unauthorized_write', 'silent_deletion',
                    name='shadowaudittype'),
            nullable=False,
        ),
        sa.Column(
            'severity',
            sa.Enum('info', 'warning', 'critical', name='shadowseverity'),
            nullable=False,
        ),
        sa.Column('table_name', sa.String(50), nullable=False),
        sa.Column('record_id', sa.String(64), nullable=False),
        sa.Column('fingerprint', sa.String(255), nullable=False, unique=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by', sa.String(100), nullable=True),
    )
    op.create_index('ix_shadow_audit_log_audit_type', 'shadow_audit_log', ['audit_type'])
    op.create_index('ix_shadow_audit_log_severity', 'shadow_audit_log', ['severity'])
    op.create_index('ix_shadow_audit_log_record_id', 'shadow_audit_log', ['record_id'])
    op.create_index('ix_shadow_audit_log_detected_at', 'shadow_audit_log', ['detected_at'])

    # ===========================================
    # PREFERENCES
    # ===========================================
    op.create_table(
        'preferences',
        sa.Column('category', sa.String(50), primary_key=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    """Drop workshop ledger tables."""
    op.drop_table('preferences')
    op.drop_table('shadow_audit_log')
    op.execute("DROP TRIGGER IF EXISTS audit_log_guard_trigger ON audit_log")
    op.execute("DROP FUNCTION IF EXISTS audit_log_guard()")
    op.drop_table('audit_log')
    op.drop_table('job_number_sequences')
    op.drop_table('job_payments')
    op.drop_table('job_line_items')
    op.drop_table('jobs')
    op.drop_table('customers')
    for enum_name in ('shadowseverity', 'shadowaudittype', 'reviewstatus',
                      'auditoperation', 'jobstatus', 'discounttype'):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
