from typing import Dict, Iterable, Optional

from .errors import ValidationError
from .scoring import STANDARD_RULES, Ruleset


class RoundDraft:
    """Unsaved bids, tricks and bonuses for the round being played.

    Lives for one submission: seed it with the bids already saved for the
    round, apply what the client sent, hand the result to the ledger and drop
    it. Unset values count as 0, the way the score sheet treats an untouched
    selector.
    """

    def __init__(self, round_number: int, rules: Ruleset = STANDARD_RULES):
        self.round_number = round_number
        self.rules = rules
        self._bids: Dict[int, object] = {}
        self._tricks: Dict[int, object] = {}
        self._bonus: Dict[int, object] = {}

    def set_bid(self, game_player_id: int, value) -> None:
        self._bids[game_player_id] = value

    def set_tricks(self, game_player_id: int, value) -> None:
        self._tricks[game_player_id] = value

    def set_bonus(self, game_player_id: int, value) -> None:
        self._bonus[game_player_id] = value

    def seed_bids(self, bids: Dict[int, int]) -> None:
        for gp_id, bid in bids.items():
            self._bids.setdefault(gp_id, bid)

    def apply(self, payload: Optional[Dict]) -> 'RoundDraft':
        """Merge a {player id: {bid, tricks_won, bonus}} payload into the draft."""
        for raw_id, entry in (payload or {}).items():
            gp_id = raw_id
            if isinstance(raw_id, str):
                try:
                    gp_id = int(raw_id.strip())
                except ValueError:
                    raise ValidationError('player id must be an integer') from None
            entry = entry if isinstance(entry, dict) else {}
            if entry.get('bid') is not None:
                self.set_bid(gp_id, entry['bid'])
            tricks = entry.get('tricks_won', entry.get('tricks'))
            if tricks is not None:
                self.set_tricks(gp_id, tricks)
            bonus = entry.get('bonus', entry.get('bonus_points'))
            if bonus is not None:
                self.set_bonus(gp_id, bonus)
        return self

    def touched(self):
        seen = []
        for values in (self._bids, self._tricks, self._bonus):
            for gp_id in values:
                if gp_id not in seen:
                    seen.append(gp_id)
        return seen

    def bids(self, membership_ids: Optional[Iterable[int]] = None) -> Dict[int, object]:
        ids = list(self._bids) if membership_ids is None else list(membership_ids)
        return {gp_id: self._bids.get(gp_id, 0) for gp_id in ids}

    def outcomes(self, membership_ids: Iterable[int]) -> Dict[int, dict]:
        return {
            gp_id: {
                'bid': self._bids.get(gp_id, 0),
                'tricks_won': self._tricks.get(gp_id, 0),
                'bonus': self._bonus.get(gp_id, 0),
            }
            for gp_id in membership_ids
        }

    def preview(self, membership_ids: Iterable[int]) -> Dict[int, int]:
        """Round scores the draft would settle to; inputs must already be ints."""
        return {
            gp_id: self.rules.score(self.round_number, o['bid'], o['tricks_won'], o['bonus'])
            for gp_id, o in self.outcomes(membership_ids).items()
        }
