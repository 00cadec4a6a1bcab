from contextlib import contextmanager
from typing import Dict, Iterable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from tricktally import db
from tricktally.models import Round
from .errors import GameNotFound, MembershipNotFound, RoundNotFound, StoreFailure, ValidationError
from .scoring import STANDARD_RULES, Ruleset
from .store import GameStore


def as_int(value, field: str, minimum: Optional[int] = None) -> int:
    """Coerce client input to an int, rejecting bools, floats and junk."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f'{field} must be an integer')
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            raise ValidationError(f'{field} must be an integer') from None
    else:
        raise ValidationError(f'{field} must be an integer')
    if minimum is not None and number < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    return number


def _first_present(entry: dict, *keys):
    for key in keys:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


class RoundLedger:
    """Pending and settled rounds of one game, and the totals derived from them.

    Totals are a cache: every write that touches a round score re-derives
    each membership's total from the full settled history inside the same
    transaction, so re-settling or correcting a round can never double count.
    """

    def __init__(self, game_id: int, rules: Ruleset = STANDARD_RULES):
        self.game_id = game_id
        self.rules = rules
        self.store = GameStore(game_id)

    # ---- public operations ----

    def record_bids(self, round_number, bids: Dict, membership_ids: Optional[Iterable[int]] = None) -> Round:
        """Create or update the pending round with the given bids.

        Safe to call repeatedly while players change their minds. A missing
        bid defaults to 0 when the round is first created.
        """
        round_number = as_int(round_number, 'round_number', minimum=1)
        clean_bids = {
            as_int(gp_id, 'player id'): as_int(bid, 'bid', minimum=0)
            for gp_id, bid in (bids or {}).items()
        }
        game = self._load_game()
        memberships = self._memberships()
        rnd = self._round_slot(round_number)

        targets = list(memberships) if membership_ids is None else [as_int(i, 'player id') for i in membership_ids]
        targets = self._known(targets, memberships, 'bids')
        clean_bids = {gp_id: clean_bids[gp_id] for gp_id in self._known(list(clean_bids), memberships, 'bids')}

        with self._atomic('record bids'):
            if rnd is None:
                rnd = self.store.create_round(round_number)
                for gp_id in targets:
                    self.store.upsert_score(rnd, gp_id, bid=clean_bids.get(gp_id, 0), tricks_won=None,
                                            bonus=0, round_score=0)
                current_app.logger.info(f"[bids] game={self.game_id} round={round_number} created players={len(targets)}")
                return rnd

            was_settled = not rnd.is_pending
            for gp_id, bid in clean_bids.items():
                row = rnd.score_for(gp_id)
                if row is None:
                    if was_settled:
                        current_app.logger.warning(
                            f"[bids-skip] game={self.game_id} round={round_number} player={gp_id} no row in settled round"
                        )
                        continue
                    self.store.upsert_score(rnd, gp_id, bid=bid, tricks_won=None, bonus=0, round_score=0)
                elif row.tricks_won is None:
                    self.store.upsert_score(rnd, gp_id, bid=bid)
                else:
                    self.store.upsert_score(
                        rnd, gp_id, bid=bid,
                        round_score=self.rules.score(round_number, bid, row.tricks_won, row.bonus_points),
                    )
            if not was_settled:
                for gp_id in targets:
                    if rnd.score_for(gp_id) is None:
                        self.store.upsert_score(rnd, gp_id, bid=0, tricks_won=None, bonus=0, round_score=0)
            else:
                current_app.logger.warning(f"[bids] game={self.game_id} round={round_number} already settled, rescoring")
                self._refresh_totals(memberships)
                if game.status == 'finished':
                    self._finish(memberships)
            current_app.logger.info(f"[bids] game={self.game_id} round={round_number} updated bids={len(clean_bids)}")
        return rnd

    def settle_round(self, round_number, outcomes: Dict) -> Round:
        """Record trick outcomes and bonuses, scoring every listed player.

        Creates the round first if bids were never saved separately. Settling
        the final round finishes the game.
        """
        round_number = as_int(round_number, 'round_number', minimum=1)
        clean = self._clean_outcomes(outcomes)
        game = self._load_game()
        memberships = self._memberships()
        rnd = self._round_slot(round_number)
        known = {gp_id: clean[gp_id] for gp_id in self._known(list(clean), memberships, 'settle')}

        with self._atomic('settle round'):
            if rnd is None:
                rnd = self.store.create_round(round_number)
                for gp_id in memberships:
                    if gp_id not in known:
                        self.store.upsert_score(rnd, gp_id, bid=0, tricks_won=None, bonus=0, round_score=0)
            for gp_id, (bid, tricks_won, bonus) in known.items():
                self._write_outcome(rnd, gp_id, bid, tricks_won, bonus)
            self._refresh_totals(memberships)
            current_app.logger.info(
                f"[settle] game={self.game_id} round={round_number} players={len(known)} pending={rnd.is_pending}"
            )
            # Re-settling an earlier round after the match ended re-picks the winner too
            if not rnd.is_pending and (round_number == self.rules.total_rounds or game.status == 'finished'):
                self._finish(memberships)
        return rnd

    def update_settled_round(self, round_number, outcomes: Dict) -> Round:
        """Correct an already settled round in place."""
        round_number = as_int(round_number, 'round_number', minimum=1)
        clean = self._clean_outcomes(outcomes)
        game = self._load_game()
        rnd = self.store.get_round(round_number)
        if rnd is None:
            raise RoundNotFound(self.game_id, round_number)
        if rnd.is_pending:
            raise ValidationError(f'Round {round_number} is not settled yet')
        memberships = self._memberships()

        with self._atomic('correct round'):
            for gp_id, (bid, tricks_won, bonus) in clean.items():
                if gp_id not in memberships or rnd.score_for(gp_id) is None:
                    self._warn_unknown(gp_id, 'correct')
                    continue
                self._write_outcome(rnd, gp_id, bid, tricks_won, bonus)
            drifted = self._refresh_totals(memberships)
            current_app.logger.info(
                f"[correct] game={self.game_id} round={round_number} changed_totals={sorted(drifted)}"
            )
            if game.status == 'finished':
                self._finish(memberships)
        return rnd

    def reset(self) -> None:
        """Delete every round and score, zero the totals, reopen the game."""
        self._load_game()
        memberships = self._memberships()
        with self._atomic('reset game'):
            deleted = self.store.delete_rounds()
            for gp in memberships.values():
                self.store.update_membership_total(gp, 0)
            self.store.reopen_game()
        current_app.logger.info(f"[reset] game={self.game_id} rounds_deleted={deleted}")

    def reconcile(self) -> Dict[int, int]:
        """Rewrite cached totals from history; returns {membership id: corrected total} for drifted ones."""
        self._load_game()
        memberships = self._memberships()
        with self._atomic('reconcile totals'):
            drifted = self._refresh_totals(memberships)
        if drifted:
            current_app.logger.warning(f"[reconcile] game={self.game_id} repaired={drifted}")
        return drifted

    # ---- helpers ----

    @contextmanager
    def _atomic(self, action: str):
        try:
            yield
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"[store-failure] game={self.game_id} action={action} error={exc}")
            raise StoreFailure(f'Could not {action} for game {self.game_id}') from exc
        except Exception:
            db.session.rollback()
            raise

    def _load_game(self):
        game = self.store.get_game()
        if game is None:
            raise GameNotFound(self.game_id)
        return game

    def _memberships(self):
        return {gp.id: gp for gp in self.store.list_memberships()}

    def _warn_unknown(self, gp_id, action):
        err = MembershipNotFound(self.game_id, gp_id)
        current_app.logger.warning(f"[{action}-skip] game={self.game_id} player={gp_id} {err.message}")

    def _known(self, gp_ids, memberships, action):
        known = []
        for gp_id in gp_ids:
            if gp_id in memberships:
                known.append(gp_id)
            else:
                self._warn_unknown(gp_id, action)
        return known

    def _round_slot(self, round_number: int) -> Optional[Round]:
        """Return the existing round, or None when round_number is the next one to open.

        Anything else would leave a gap, a second pending round or a pending
        round behind a settled one.
        """
        if round_number > self.rules.total_rounds:
            raise ValidationError(f'A match has only {self.rules.total_rounds} rounds')
        rounds = self.store.list_rounds()
        for rnd in rounds:
            if rnd.round_number == round_number:
                return rnd
        pending = [r.round_number for r in rounds if r.is_pending]
        if pending:
            raise ValidationError(f'Round {pending[0]} is still waiting for its outcome')
        next_round = max((r.round_number for r in rounds), default=0) + 1
        if round_number != next_round:
            raise ValidationError(f'Round {round_number} cannot start before round {next_round}')
        return None

    def _clean_outcomes(self, outcomes):
        if not outcomes:
            raise ValidationError('No scores submitted')
        clean = {}
        for gp_id, entry in outcomes.items():
            gp_id = as_int(gp_id, 'player id')
            if not isinstance(entry, dict):
                raise ValidationError(f'Scores for player {gp_id} must be an object')
            bid = _first_present(entry, 'bid')
            tricks = _first_present(entry, 'tricks_won', 'tricks')
            bonus = _first_present(entry, 'bonus', 'bonus_points')
            clean[gp_id] = (
                None if bid is None else as_int(bid, 'bid', minimum=0),
                as_int(tricks, 'tricks_won', minimum=0),
                0 if bonus is None else as_int(bonus, 'bonus'),
            )
        return clean

    def _write_outcome(self, rnd: Round, gp_id: int, bid, tricks_won: int, bonus: int):
        if bid is None:
            # Fall back to the bid saved while the round was pending
            row = rnd.score_for(gp_id)
            bid = row.bid if row is not None else 0
        round_score = self.rules.score(rnd.round_number, bid, tricks_won, bonus)
        self.store.upsert_score(rnd, gp_id, bid=bid, tricks_won=tricks_won, bonus=bonus, round_score=round_score)

    def _refresh_totals(self, memberships) -> Dict[int, int]:
        sums = self.store.settled_score_sums()
        drifted = {}
        for gp_id, gp in memberships.items():
            total = sums.get(gp_id, 0)
            if gp.total_score != total:
                drifted[gp_id] = total
                self.store.update_membership_total(gp, total)
        return drifted

    def _finish(self, memberships):
        # Single persisted winner: first by total desc then join order
        ranked = sorted(memberships.values(), key=lambda gp: (-gp.total_score, gp.id))
        winner_id = ranked[0].id if ranked else None
        self.store.finish_game(winner_id)
        current_app.logger.info(f"[finish] game={self.game_id} winner={winner_id}")
