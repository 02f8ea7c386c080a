"""initial schema: size rules, free marks, books, barcodes, jobs, audit

Revision ID: 0001_initial
Revises:
Create Date: 2025-10-06T09:00:00
"""

from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _has_table(name: str) -> bool:
    insp = sa.inspect(op.get_bind())
    return name in insp.get_table_names()


def upgrade():
    if not _has_table('size_rule'):
        op.create_table(
            'size_rule',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('version', sa.String(length=64), nullable=False),
            sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('label', sa.String(length=64), nullable=True),
            sa.Column('min_width', sa.Float(), nullable=True),
            sa.Column('min_inclusive', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('max_width', sa.Float(), nullable=True),
            sa.Column('max_inclusive', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_size_rule_version', 'size_rule', ['version'])

    if not _has_table('size_band'):
        op.create_table(
            'size_band',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('rule_id', sa.Integer(), sa.ForeignKey('size_rule.id', ondelete='CASCADE'), nullable=False),
            sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('kind', sa.String(length=8), nullable=False),
            sa.Column('value', sa.Float(), nullable=True),
            sa.Column('heights', sa.JSON(), nullable=True),
            sa.Column('inclusive', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('prefix', sa.String(length=16), nullable=False),
        )
        op.create_index('ix_size_band_rule_id', 'size_band', ['rule_id'])

    if not _has_table('free_mark'):
        op.create_table(
            'free_mark',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('mark', sa.String(length=32), nullable=False),
            sa.Column('series', sa.String(length=16), nullable=False, server_default=''),
            sa.Column('rank', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_free_mark_mark', 'free_mark', ['mark'], unique=True)
        op.create_index('ix_free_mark_series', 'free_mark', ['series'])
        op.create_index('ix_free_mark_rank', 'free_mark', ['rank'])
        op.create_index('ix_free_mark_series_rank_mark', 'free_mark', ['series', 'rank', 'mark'])

    if not _has_table('book'):
        op.create_table(
            'book',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('width', sa.Float(), nullable=False),
            sa.Column('height', sa.Float(), nullable=False),
            sa.Column('author', sa.String(length=256), nullable=False),
            sa.Column('keyword', sa.String(length=25), nullable=False),
            sa.Column('keyword_priority', sa.Integer(), nullable=False),
            sa.Column('keyword1', sa.String(length=25), nullable=True),
            sa.Column('keyword1_priority', sa.Integer(), nullable=True),
            sa.Column('keyword2', sa.String(length=25), nullable=True),
            sa.Column('keyword2_priority', sa.Integer(), nullable=True),
            sa.Column('publisher', sa.String(length=25), nullable=False),
            sa.Column('pages', sa.Integer(), nullable=False),
            sa.Column('registered_at', sa.DateTime(), nullable=True),
            sa.Column('is_top', sa.Boolean(), nullable=True),
            sa.Column('top_at', sa.DateTime(), nullable=True),
            sa.Column('status', sa.String(length=32), nullable=False, server_default='open'),
            sa.Column('state_entered_at', sa.DateTime(), nullable=True),
            sa.Column('reclaim_due_at', sa.DateTime(), nullable=True),
            sa.Column('mark', sa.String(length=32), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_book_id', 'book', ['id'])
        op.create_index('ix_book_author', 'book', ['author'])
        op.create_index('ix_book_publisher', 'book', ['publisher'])
        op.create_index('ix_book_registered_at', 'book', ['registered_at'])
        op.create_index('ix_book_status', 'book', ['status'])
        op.create_index('ix_book_state_entered_at', 'book', ['state_entered_at'])
        op.create_index('ix_book_mark', 'book', ['mark'])

    if not _has_table('barcode'):
        op.create_table(
            'barcode',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('code', sa.String(length=32), nullable=False),
            sa.Column('code_norm', sa.String(length=32), nullable=False),
            sa.Column('series', sa.String(length=16), nullable=False),
            sa.Column('triplet', sa.String(length=8), nullable=True),
            sa.Column('stripes_total', sa.Integer(), nullable=True),
            sa.Column('rank', sa.Integer(), nullable=True),
            sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='free'),
            sa.Column('reserved_at', sa.DateTime(), nullable=True),
            sa.Column('assigned_book_id', sa.Integer(), sa.ForeignKey('book.id', ondelete='SET NULL'), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_barcode_code', 'barcode', ['code'], unique=True)
        op.create_index('ix_barcode_code_norm', 'barcode', ['code_norm'])
        op.create_index('ix_barcode_series', 'barcode', ['series'])
        op.create_index('ix_barcode_rank', 'barcode', ['rank'])
        op.create_index('ix_barcode_is_available', 'barcode', ['is_available'])
        op.create_index('ix_barcode_status', 'barcode', ['status'])
        op.create_index('ix_barcode_assigned_book_id', 'barcode', ['assigned_book_id'])
        op.create_index('ix_barcode_series_rank_code', 'barcode', ['series', 'rank', 'triplet', 'code'])

    if not _has_table('job'):
        op.create_table(
            'job',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=256), nullable=False),
            sa.Column('status', sa.String(length=32), nullable=True),
            sa.Column('lock_key', sa.String(length=128), nullable=True, unique=True),
            sa.Column('payload', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_job_status', 'job', ['status'])

    if not _has_table('audit_log'):
        op.create_table(
            'audit_log',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('resource_type', sa.String(length=64), nullable=False),
            sa.Column('resource_id', sa.Integer(), nullable=True),
            sa.Column('field', sa.String(length=128), nullable=False),
            sa.Column('old_value', sa.Text(), nullable=True),
            sa.Column('new_value', sa.Text(), nullable=True),
            sa.Column('actor', sa.String(length=128), nullable=True),
            sa.Column('ts', sa.DateTime(), nullable=True),
        )
        op.create_index('ix_audit_log_resource_id', 'audit_log', ['resource_id'])


def downgrade():
    for name in ('audit_log', 'job', 'barcode', 'book', 'free_mark', 'size_band', 'size_rule'):
        if _has_table(name):
            op.drop_table(name)
