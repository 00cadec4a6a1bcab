"""create player, game, game_player, round and score tables

Revision ID: 5c2d9e7a1f30
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2d9e7a1f30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'player' not in existing_tables:
        op.create_table(
            'player',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=64), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index('ix_player_name', 'player', ['name'])

    if 'game' not in existing_tables:
        # winner_id FK is added once game_player exists
        op.create_table(
            'game',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
            sa.Column('winner_id', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        )

    if 'game_player' not in existing_tables:
        op.create_table(
            'game_player',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id', ondelete='CASCADE'), nullable=False),
            sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
            sa.Column('total_score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint('game_id', 'player_id', name='uq_game_player'),
        )
        op.create_index('ix_game_player_game_id', 'game_player', ['game_id'])
        with op.batch_alter_table('game') as batch_op:
            batch_op.create_foreign_key(
                'fk_game_winner_id', 'game_player', ['winner_id'], ['id'], ondelete='SET NULL'
            )

    if 'round' not in existing_tables:
        op.create_table(
            'round',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id', ondelete='CASCADE'), nullable=False),
            sa.Column('round_number', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint('game_id', 'round_number', name='uq_round_game_number'),
        )
        op.create_index('ix_round_game_id', 'round', ['game_id'])

    if 'score' not in existing_tables:
        op.create_table(
            'score',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('round_id', sa.Integer(), sa.ForeignKey('round.id', ondelete='CASCADE'), nullable=False),
            sa.Column('game_player_id', sa.Integer(), sa.ForeignKey('game_player.id', ondelete='CASCADE'), nullable=False),
            sa.Column('bid', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('tricks_won', sa.Integer(), nullable=True),
            sa.Column('bonus_points', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('round_score', sa.Integer(), nullable=False, server_default='0'),
            sa.UniqueConstraint('round_id', 'game_player_id', name='uq_score_round_player'),
        )
        op.create_index('ix_score_round_id', 'score', ['round_id'])


def downgrade():
    op.drop_index('ix_score_round_id', table_name='score')
    op.drop_table('score')
    op.drop_index('ix_round_game_id', table_name='round')
    op.drop_table('round')
    with op.batch_alter_table('game') as batch_op:
        batch_op.drop_constraint('fk_game_winner_id', type_='foreignkey')
    op.drop_index('ix_game_player_game_id', table_name='game_player')
    op.drop_table('game_player')
    op.drop_table('game')
    op.drop_index('ix_player_name', table_name='player')
    op.drop_table('player')
