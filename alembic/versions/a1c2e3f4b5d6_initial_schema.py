"""initial quiz, attempt, score and reward schema

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1c2e3f4b5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'quiz_posts',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('slug', sa.String(64), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('theme', sa.JSON(), nullable=True),
        sa.Column('icon', sa.String(64), nullable=True),
        sa.Column('gradient', sa.String(128), nullable=True),
        sa.Column('author_id', sa.String(64), nullable=True),
        sa.Column('author_email', sa.String(255), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_quiz_posts_slug', 'quiz_posts', ['slug'], unique=True)
    op.create_index('ix_quiz_posts_status', 'quiz_posts', ['status'])
    op.create_index('ix_quiz_posts_created_at', 'quiz_posts', ['created_at'])

    op.create_table(
        'questions',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('quiz_post_id', sa.String(32), sa.ForeignKey('quiz_posts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), server_default='1', nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_questions_quiz_post_id', 'questions', ['quiz_post_id'])
    op.create_index('ix_questions_created_at', 'questions', ['created_at'])

    op.create_table(
        'choices',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('question_id', sa.String(32), sa.ForeignKey('questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_choices_question_id', 'choices', ['question_id'])
    op.create_index('ix_choices_created_at', 'choices', ['created_at'])

    op.create_table(
        'attempts',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('quiz_post_id', sa.String(32), sa.ForeignKey('quiz_posts.id'), nullable=False),
        sa.Column('account_id', sa.String(64), nullable=True),
        sa.Column('player_email', sa.String(255), nullable=True),
        sa.Column('device_hash', sa.String(64), nullable=False),
        sa.Column('player_name', sa.String(255), nullable=False),
        sa.Column('score', sa.Integer(), server_default='0', nullable=False),
        sa.Column('max_score', sa.Integer(), server_default='0', nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_attempts_quiz_post_id', 'attempts', ['quiz_post_id'])
    op.create_index('ix_attempts_account_id', 'attempts', ['account_id'])
    op.create_index('ix_attempts_device_hash', 'attempts', ['device_hash'])
    op.create_index('ix_attempts_created_at', 'attempts', ['created_at'])

    op.create_table(
        'answers',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('attempt_id', sa.String(32), sa.ForeignKey('attempts.id'), nullable=False),
        sa.Column('question_id', sa.String(32), nullable=False),
        sa.Column('choice_id', sa.String(32), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_answers_attempt_id', 'answers', ['attempt_id'])
    op.create_index('ix_answers_question_id', 'answers', ['question_id'])
    op.create_index('ix_answers_created_at', 'answers', ['created_at'])

    op.create_table(
        'score_entries',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('quiz_post_id', sa.String(32), sa.ForeignKey('quiz_posts.id'), nullable=False),
        sa.Column('attempt_id', sa.String(32), sa.ForeignKey('attempts.id'), nullable=False, unique=True),
        sa.Column('device_hash', sa.String(64), nullable=True),
        sa.Column('account_id', sa.String(64), nullable=True),
        sa.Column('player_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('email_hash', sa.String(64), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('max_score', sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_score_entries_quiz_post_id', 'score_entries', ['quiz_post_id'])
    op.create_index('ix_score_entries_device_hash', 'score_entries', ['device_hash'])
    op.create_index('ix_score_entries_email_hash', 'score_entries', ['email_hash'])
    op.create_index('ix_score_entries_created_at', 'score_entries', ['created_at'])

    op.create_table(
        'users',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('account_id', sa.String(64), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_account_id', 'users', ['account_id'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    op.create_table(
        'reward_events',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('attempt_id', sa.String(32), sa.ForeignKey('attempts.id'), nullable=False, unique=True),
        sa.Column('account_id', sa.String(64), nullable=False),
        sa.Column('quiz_post_id', sa.String(32), sa.ForeignKey('quiz_posts.id'), nullable=False),
        sa.Column('event_type', sa.String(32), nullable=False),
        sa.Column('coins', sa.Integer(), nullable=False),
        sa.Column('tokens', sa.Integer(), nullable=False),
        sa.Column('xp', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_reward_events_account_id', 'reward_events', ['account_id'])
    op.create_index('ix_reward_events_quiz_post_id', 'reward_events', ['quiz_post_id'])
    op.create_index('ix_reward_events_status', 'reward_events', ['status'])
    op.create_index('ix_reward_events_next_attempt_at', 'reward_events', ['next_attempt_at'])
    op.create_index('ix_reward_events_created_at', 'reward_events', ['created_at'])


def downgrade() -> None:
    op.drop_table('reward_events')
    op.drop_table('users')
    op.drop_table('score_entries')
    op.drop_table('answers')
    op.drop_table('attempts')
    op.drop_table('choices')
    op.drop_table('questions')
    op.drop_table('quiz_posts')
