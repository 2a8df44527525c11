"""create classroom schema

Revision ID: 3b7d2c9e41a0
Revises:
Create Date: 2025-10-01 09:12:44.120551

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3b7d2c9e41a0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'class_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'uq_class_sessions_single_active',
        'class_sessions',
        ['is_active'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'students',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['class_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'username', name='uq_student_session_username')
    )
    op.create_index('ix_students_session_id', 'students', ['session_id'], unique=False)

    op.create_table(
        'prompt_submissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=True),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('image_data', sa.Text(), nullable=True),
        sa.Column('image_mime_type', sa.String(length=120), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('is_shared', sa.Boolean(), nullable=False),
        sa.Column('revision_index', sa.Integer(), nullable=False),
        sa.Column('parent_submission_id', sa.Integer(), nullable=True),
        sa.Column('root_submission_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['class_sessions.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['parent_submission_id'], ['prompt_submissions.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['root_submission_id'], ['prompt_submissions.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_prompt_submissions_session_id', 'prompt_submissions', ['session_id'], unique=False)
    op.create_index('ix_prompt_submissions_student_id', 'prompt_submissions', ['student_id'], unique=False)
    op.create_index('ix_prompt_submissions_root_submission_id', 'prompt_submissions', ['root_submission_id'], unique=False)

    op.create_table(
        'chat_threads',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=80), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['class_sessions.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_chat_threads_session_id', 'chat_threads', ['session_id'], unique=False)
    op.create_index('ix_chat_threads_student_id', 'chat_threads', ['student_id'], unique=False)

    op.create_table(
        'chat_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('thread_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=True),
        sa.Column('sender', sa.String(length=20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['thread_id'], ['chat_threads.id']),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_chat_messages_thread_id', 'chat_messages', ['thread_id'], unique=False)


def downgrade():
    op.drop_index('ix_chat_messages_thread_id', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_index('ix_chat_threads_student_id', table_name='chat_threads')
    op.drop_index('ix_chat_threads_session_id', table_name='chat_threads')
    op.drop_table('chat_threads')
    op.drop_index('ix_prompt_submissions_root_submission_id', table_name='prompt_submissions')
    op.drop_index('ix_prompt_submissions_student_id', table_name='prompt_submissions')
    op.drop_index('ix_prompt_submissions_session_id', table_name='prompt_submissions')
    op.drop_table('prompt_submissions')
    op.drop_index('ix_students_session_id', table_name='students')
    op.drop_table('students')
    op.drop_index('uq_class_sessions_single_active', table_name='class_sessions')
    op.drop_table('class_sessions')
