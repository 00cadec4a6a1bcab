"""Round scoring for Skull King.

Scores are pure functions of (round number, bid, tricks won, bonus). The
ruleset object bundles the scoring rule with the match shape so the ledger
and controller never hard-code either.
"""

NIL_POINTS_PER_ROUND = 10
EXACT_POINTS_PER_TRICK = 20
MISS_PENALTY_PER_TRICK = 10


def score_round(round_number: int, bid: int, tricks_won: int, bonus: int = 0) -> int:
    """Return the signed score for one player's round.

    A zero bid is worth 10 points per round number when no trick is taken and
    costs the same otherwise. A positive bid scores 20 per trick when exact
    and loses 10 per trick of error. Bonus points are added either way.
    """
    if bid == 0:
        if tricks_won == 0:
            base = round_number * NIL_POINTS_PER_ROUND
        else:
            base = -(round_number * NIL_POINTS_PER_ROUND)
    elif bid == tricks_won:
        base = bid * EXACT_POINTS_PER_TRICK
    else:
        base = -(abs(bid - tricks_won) * MISS_PENALTY_PER_TRICK)
    return base + bonus


class Ruleset:
    """Fixed match shape plus the scoring rule applied to every round."""

    def __init__(self, name: str, total_rounds: int, min_players: int = 2, scorer=score_round):
        self.name = name
        self.total_rounds = total_rounds
        self.min_players = min_players
        self._scorer = scorer

    def score(self, round_number: int, bid: int, tricks_won: int, bonus: int = 0) -> int:
        return self._scorer(round_number, bid, tricks_won, bonus)

    def max_bid(self, round_number: int) -> int:
        # Interface hint only, never enforced when scoring
        return round_number + 1

    def cards_in_round(self, round_number: int) -> int:
        return round_number

    def __repr__(self):
        return f"Ruleset({self.name!r}, total_rounds={self.total_rounds})"


STANDARD_RULES = Ruleset('skull_king', total_rounds=10)
