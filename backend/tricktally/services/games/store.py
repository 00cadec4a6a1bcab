from typing import Dict, List, Optional

from sqlalchemy import func

from tricktally import db
from tricktally.models import Game, GamePlayer, Round, Score

_UNSET = object()


class GameStore:
    """Row-level access to one game's rounds, scores and memberships.

    The store only flushes. Callers own the transaction and decide when to
    commit or roll back.
    """

    def __init__(self, game_id: int):
        self.game_id = game_id

    def get_game(self) -> Optional[Game]:
        return db.session.get(Game, self.game_id)

    def list_memberships(self) -> List[GamePlayer]:
        return GamePlayer.query.filter_by(game_id=self.game_id).order_by(GamePlayer.id).all()

    def create_round(self, round_number: int) -> Round:
        rnd = Round(game_id=self.game_id, round_number=round_number)
        db.session.add(rnd)
        db.session.flush()
        return rnd

    def get_round(self, round_number: int) -> Optional[Round]:
        return Round.query.filter_by(game_id=self.game_id, round_number=round_number).first()

    def list_rounds(self) -> List[Round]:
        return Round.query.filter_by(game_id=self.game_id).order_by(Round.round_number.asc()).all()

    def upsert_score(self, rnd: Round, game_player_id: int, bid=_UNSET, tricks_won=_UNSET,
                     bonus=_UNSET, round_score=_UNSET) -> Score:
        """Insert or update the (round, membership) row; unset fields are left alone."""
        row = rnd.score_for(game_player_id)
        if row is None:
            row = Score(game_player_id=game_player_id, bid=0, tricks_won=None, bonus_points=0, round_score=0)
            rnd.scores.append(row)
        if bid is not _UNSET:
            row.bid = bid
        if tricks_won is not _UNSET:
            row.tricks_won = tricks_won
        if bonus is not _UNSET:
            row.bonus_points = bonus
        if round_score is not _UNSET:
            row.round_score = round_score
        db.session.add(row)
        db.session.flush()
        return row

    def settled_score_sums(self) -> Dict[int, int]:
        """Sum of settled round scores per membership, straight from the score rows."""
        rows = (
            db.session.query(Score.game_player_id, func.coalesce(func.sum(Score.round_score), 0))
            .join(Round, Round.id == Score.round_id)
            .filter(Round.game_id == self.game_id, Score.tricks_won.isnot(None))
            .group_by(Score.game_player_id)
            .all()
        )
        return {gp_id: int(total) for gp_id, total in rows}

    def update_membership_total(self, membership: GamePlayer, new_total: int) -> None:
        membership.total_score = new_total
        db.session.add(membership)

    def delete_rounds(self) -> int:
        # ORM deletes so the score cascade also runs on backends without FK enforcement
        rounds = self.list_rounds()
        for rnd in rounds:
            db.session.delete(rnd)
        db.session.flush()
        return len(rounds)

    def finish_game(self, winner_game_player_id: Optional[int]) -> None:
        game = self.get_game()
        game.status = 'finished'
        game.winner_id = winner_game_player_id
        db.session.add(game)

    def reopen_game(self) -> None:
        game = self.get_game()
        game.status = 'active'
        game.winner_id = None
        db.session.add(game)
