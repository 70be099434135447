"""create quiz ledger tables: user, quiz_session, topic, question, participant, answer

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b9d2'
down_revision = None
branch_labels = None
depends_on = None

SESSION_ID = '00000000-0000-0000-0000-000000000001'


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'quiz_session' not in existing_tables:
        op.create_table(
            'quiz_session',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('phase', sa.String(length=16), nullable=False),
            sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        )
        op.execute(f"INSERT INTO quiz_session (id, phase, version) VALUES ('{SESSION_ID}', 'waiting', 1)")

    if 'topic' not in existing_tables:
        op.create_table(
            'topic',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        )

    if 'question' not in existing_tables:
        op.create_table(
            'question',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('topic_id', sa.String(length=36), sa.ForeignKey('topic.id', ondelete='CASCADE'), nullable=False),
            sa.Column('text', sa.Text(), nullable=False),
            sa.Column('option_a', sa.Text(), nullable=False),
            sa.Column('option_b', sa.Text(), nullable=False),
            sa.Column('option_c', sa.Text(), nullable=False),
            sa.Column('option_d', sa.Text(), nullable=False),
            sa.Column('correct_option', sa.String(length=1), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        )
        op.create_index('ix_question_topic_id', 'question', ['topic_id'])

    if 'participant' not in existing_tables:
        op.create_table(
            'participant',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('external_key', sa.String(length=64), nullable=False),
            sa.Column('team', sa.String(length=32), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('connected', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('last_seen', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.CheckConstraint('score >= 0', name='ck_participant_score_non_negative'),
        )
        op.create_index('ix_participant_external_key', 'participant', ['external_key'], unique=True)

    if 'answer' not in existing_tables:
        op.create_table(
            'answer',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('participant_id', sa.String(length=36), sa.ForeignKey('participant.id', ondelete='CASCADE'), nullable=False),
            sa.Column('question_id', sa.String(length=36), sa.ForeignKey('question.id', ondelete='CASCADE'), nullable=False),
            sa.Column('selected_option', sa.String(length=1), nullable=False),
            sa.Column('is_correct', sa.Boolean(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.UniqueConstraint('participant_id', 'question_id', name='uq_answer_participant_question'),
        )
        op.create_index('ix_answer_participant_id', 'answer', ['participant_id'])
        op.create_index('ix_answer_question_id', 'answer', ['question_id'])


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    # Children before parents
    for table in ('answer', 'participant', 'question', 'topic', 'quiz_session', 'user'):
        if table in existing_tables:
            op.drop_table(table)
