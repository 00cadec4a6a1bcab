from datetime import datetime, timezone

from tricktally import db


def _utcnow():
    return datetime.now(timezone.utc)


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    memberships = db.relationship('GamePlayer', back_populates='player')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
        }


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), default='active', nullable=False)  # active, finished
    # Single persisted winner; ties are resolved at read time by the controller
    winner_id = db.Column(
        db.Integer,
        db.ForeignKey('game_player.id', name='fk_game_winner_id', use_alter=True, ondelete='SET NULL'),
        nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    players = db.relationship(
        'GamePlayer',
        back_populates='game',
        foreign_keys='GamePlayer.game_id',
        order_by='GamePlayer.id',
        cascade='all, delete-orphan',
    )
    rounds = db.relationship(
        'Round',
        back_populates='game',
        order_by='Round.round_number',
        cascade='all, delete-orphan',
    )

    def to_dict(self):
        return {
            'id': self.id,
            'status': self.status,
            'winner_id': self.winner_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'players': [gp.to_dict() for gp in self.players],
        }


class GamePlayer(db.Model):
    __tablename__ = 'game_player'
    __table_args__ = (db.UniqueConstraint('game_id', 'player_id', name='uq_game_player'),)
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    # Cache of the sum of this membership's settled round scores
    total_score = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    game = db.relationship('Game', back_populates='players', foreign_keys=[game_id])
    player = db.relationship('Player', back_populates='memberships')
    scores = db.relationship('Score', back_populates='game_player', cascade='all')

    @property
    def name(self):
        return self.player.name if self.player else 'Unknown'

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'name': self.name,
            'total_score': self.total_score,
        }


class Round(db.Model):
    __tablename__ = 'round'
    __table_args__ = (db.UniqueConstraint('game_id', 'round_number', name='uq_round_game_number'),)
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    game = db.relationship('Game', back_populates='rounds')
    scores = db.relationship(
        'Score',
        back_populates='round',
        order_by='Score.game_player_id',
        cascade='all, delete-orphan',
    )

    @property
    def is_pending(self):
        """Bids are recorded but at least one trick outcome is still missing."""
        return any(s.tricks_won is None for s in self.scores)

    def score_for(self, game_player_id):
        for s in self.scores:
            if s.game_player_id == game_player_id:
                return s
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'round_number': self.round_number,
            'pending': self.is_pending,
            'scores': {s.game_player_id: s.to_dict() for s in self.scores},
        }


class Score(db.Model):
    __tablename__ = 'score'
    __table_args__ = (db.UniqueConstraint('round_id', 'game_player_id', name='uq_score_round_player'),)
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('round.id', ondelete='CASCADE'), nullable=False, index=True)
    game_player_id = db.Column(db.Integer, db.ForeignKey('game_player.id', ondelete='CASCADE'), nullable=False)
    bid = db.Column(db.Integer, default=0, nullable=False)
    tricks_won = db.Column(db.Integer, nullable=True)  # NULL while the round is pending
    bonus_points = db.Column(db.Integer, default=0, nullable=False)
    round_score = db.Column(db.Integer, default=0, nullable=False)
    round = db.relationship('Round', back_populates='scores')
    game_player = db.relationship('GamePlayer', back_populates='scores')

    def to_dict(self):
        return {
            'bid': self.bid,
            'tricks_won': self.tricks_won,
            'bonus': self.bonus_points,
            'score': self.round_score,
        }
