"""
Create course registration, quota and waitlist promotion tables

Revision ID: 20261019_create_course_registration_tables
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'c0a1b2d3e4f5'
down_revision = None
branch_labels = None
depends_on = None


membership_type = sa.Enum(
    'BASIC_MEMBER', 'PREMIUM_MEMBER', 'TRAINER', 'ADMINISTRATOR', 'OPEN_GYM', 'WELLPASS', 'TEN_CARD',
    name='membershiptype'
)
registration_status = sa.Enum('REGISTERED', 'WAITLISTED', 'CANCELLED', name='registrationstatus')
quota_kind = sa.Enum('NONE', 'WEEKLY', 'CREDIT', name='quotakind')
credit_transaction_type = sa.Enum(
    'course_registration', 'course_cancellation', 'admin_recharge', 'admin_deduction',
    name='credittransactiontype'
)
promotion_type = sa.Enum('cancellation', 'automatic', name='promotiontype')


def upgrade():
    op.create_table(
        'members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('membership_type', membership_type, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_members_id', 'members', ['id'])
    op.create_index('ix_members_email', 'members', ['email'], unique=True)

    op.create_table(
        'courses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('registration_deadline_minutes', sa.Integer(), nullable=False),
        sa.Column('cancellation_deadline_minutes', sa.Integer(), nullable=False),
        sa.Column('is_cancelled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.CheckConstraint('capacity > 0', name='ck_courses_capacity_positive'),
        sa.CheckConstraint('registration_deadline_minutes >= 0', name='ck_courses_registration_deadline'),
        sa.CheckConstraint('cancellation_deadline_minutes >= 0', name='ck_courses_cancellation_deadline'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_courses_id', 'courses', ['id'])
    op.create_index('ix_courses_start_at', 'courses', ['start_at'])
    op.create_index('ix_courses_is_cancelled', 'courses', ['is_cancelled'])
    op.create_index('ix_courses_upcoming', 'courses', ['is_cancelled', 'start_at'])

    op.create_table(
        'course_registrations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
        sa.Column('member_id', sa.Integer(), sa.ForeignKey('members.id'), nullable=False),
        sa.Column('status', registration_status, nullable=False),
        sa.Column('enqueued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('quota_kind', quota_kind, nullable=False),
        sa.Column('quota_week_start', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('course_id', 'member_id', name='uq_course_registrations_course_member')
    )
    op.create_index('ix_course_registrations_id', 'course_registrations', ['id'])
    op.create_index('ix_course_registrations_course_id', 'course_registrations', ['course_id'])
    op.create_index('ix_course_registrations_member_id', 'course_registrations', ['member_id'])
    op.create_index('ix_course_registrations_status', 'course_registrations', ['status'])
    op.create_index(
        'ix_course_registrations_queue', 'course_registrations', ['course_id', 'status', 'enqueued_at']
    )

    op.create_table(
        'weekly_registration_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), sa.ForeignKey('members.id'), nullable=False),
        sa.Column('week_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('registrations_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('member_id', 'week_start', name='uq_weekly_counters_member_week')
    )
    op.create_index('ix_weekly_registration_counters_id', 'weekly_registration_counters', ['id'])
    op.create_index('ix_weekly_registration_counters_member_id', 'weekly_registration_counters', ['member_id'])

    op.create_table(
        'membership_credits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), sa.ForeignKey('members.id'), nullable=False),
        sa.Column('credits_remaining', sa.Integer(), nullable=False),
        sa.Column('credits_total', sa.Integer(), nullable=False),
        sa.Column('last_recharged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('member_id')
    )
    op.create_index('ix_membership_credits_id', 'membership_credits', ['id'])

    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), sa.ForeignKey('members.id'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('transaction_type', credit_transaction_type, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_credit_transactions_id', 'credit_transactions', ['id'])
    op.create_index('ix_credit_transactions_member_id', 'credit_transactions', ['member_id'])
    op.create_index('ix_credit_transactions_course_id', 'credit_transactions', ['course_id'])

    op.create_table(
        'waitlist_promotion_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('registration_id', sa.Integer(), sa.ForeignKey('course_registrations.id'), nullable=False),
        sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=False),
        sa.Column('member_id', sa.Integer(), sa.ForeignKey('members.id'), nullable=False),
        sa.Column('promotion_type', promotion_type, nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_waitlist_promotion_events_id', 'waitlist_promotion_events', ['id'])
    op.create_index('ix_waitlist_promotion_events_registration_id', 'waitlist_promotion_events', ['registration_id'])
    op.create_index('ix_waitlist_promotion_events_course_id', 'waitlist_promotion_events', ['course_id'])
    op.create_index('ix_waitlist_promotion_events_member_id', 'waitlist_promotion_events', ['member_id'])
    op.create_index(
        'ix_waitlist_promotion_events_pending', 'waitlist_promotion_events', ['notified_at', 'created_at']
    )


def downgrade():
    op.drop_table('waitlist_promotion_events')
    op.drop_table('credit_transactions')
    op.drop_table('membership_credits')
    op.drop_table('weekly_registration_counters')
    op.drop_table('course_registrations')
    op.drop_table('courses')
    op.drop_table('members')

    bind = op.get_bind()
    for enum_type in (promotion_type, credit_transaction_type, quota_kind, registration_status, membership_type):
        enum_type.drop(bind, checkfirst=True)
