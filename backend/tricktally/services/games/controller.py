from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from flask import current_app

from .errors import GameNotFound
from .scoring import STANDARD_RULES, Ruleset
from .stats import RoundResult, bidding_summary
from .store import GameStore


class Phase(str, Enum):
    BIDDING = 'BIDDING'
    SCORING = 'SCORING'
    FINISHED = 'FINISHED'


class CellState(str, Enum):
    PENDING = 'PENDING'
    SETTLED = 'SETTLED'
    FUTURE = 'FUTURE'


@dataclass
class Cell:
    state: CellState
    bid: Optional[int] = None
    tricks_won: Optional[int] = None
    bonus: Optional[int] = None
    score: Optional[int] = None

    def to_dict(self):
        return {
            'state': self.state.value,
            'bid': self.bid,
            'tricks_won': self.tricks_won,
            'bonus': self.bonus,
            'score': self.score,
        }


@dataclass
class MatchState:
    game_id: int
    phase: Phase
    round_number: int
    total_rounds: int
    is_over: bool
    totals: Dict[int, int]
    winners: List[int]
    leaders: List[int]
    lead_margin: int
    pending_bids: Dict[int, int]
    history: List[RoundResult]
    cells: Dict[int, Dict[int, Cell]]
    stats: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            'game_id': self.game_id,
            'phase': self.phase.value,
            'round_number': self.round_number,
            'total_rounds': self.total_rounds,
            'is_over': self.is_over,
            'totals': self.totals,
            'winners': self.winners,
            'leader': {'ids': self.leaders, 'margin': self.lead_margin},
            'pending_bids': self.pending_bids,
            'history': [
                {
                    'round_number': r.round_number,
                    'scores': {
                        gp_id: {
                            'bid': r.bids.get(gp_id),
                            'tricks_won': r.tricks.get(gp_id),
                            'bonus': r.bonuses.get(gp_id),
                            'score': r.scores.get(gp_id),
                        }
                        for gp_id in r.bids
                    },
                }
                for r in self.history
            ],
            'cells': {
                n: {gp_id: cell.to_dict() for gp_id, cell in row.items()}
                for n, row in self.cells.items()
            },
            'stats': self.stats,
        }


class MatchController:
    """Derives the live view of a match from what the ledger persisted.

    Phase and round pointer come from the round rows alone: a pending round
    means SCORING, otherwise the next round is open for bids until every
    round is settled.
    """

    def __init__(self, game_id: int, rules: Ruleset = STANDARD_RULES):
        self.game_id = game_id
        self.rules = rules
        self.store = GameStore(game_id)

    def state(self) -> MatchState:
        game = self.store.get_game()
        if game is None:
            raise GameNotFound(self.game_id)
        roster = [gp.id for gp in self.store.list_memberships()]
        cached = {gp.id: gp.total_score for gp in game.players}
        rounds = self.store.list_rounds()

        pending = next((r for r in rounds if r.is_pending), None)
        settled = [r for r in rounds if not r.is_pending]
        round_number = pending.round_number if pending else len(settled) + 1
        is_over = pending is None and round_number > self.rules.total_rounds
        if pending is not None:
            phase = Phase.SCORING
        elif is_over:
            phase = Phase.FINISHED
        else:
            phase = Phase.BIDDING

        totals = self._totals(roster, cached)
        winners = self.winners(totals) if is_over else []
        leaders, margin = self.leader(totals, roster)

        history = [
            RoundResult(
                round_number=r.round_number,
                bids={s.game_player_id: s.bid for s in r.scores},
                tricks={s.game_player_id: s.tricks_won for s in r.scores},
                scores={s.game_player_id: s.round_score for s in r.scores},
                bonuses={s.game_player_id: s.bonus_points for s in r.scores},
            )
            for r in settled
        ]
        return MatchState(
            game_id=self.game_id,
            phase=phase,
            round_number=round_number,
            total_rounds=self.rules.total_rounds,
            is_over=is_over,
            totals=totals,
            winners=winners,
            leaders=leaders,
            lead_margin=margin,
            pending_bids={s.game_player_id: s.bid for s in pending.scores} if pending else {},
            history=history,
            cells=self._cells(rounds, roster),
            stats=bidding_summary(history, roster, self.rules),
        )

    def _totals(self, roster, cached) -> Dict[int, int]:
        derived = self.store.settled_score_sums()
        derived = {gp_id: derived.get(gp_id, 0) for gp_id in roster}
        if derived != cached:
            # Reads never write; reconcile() on the ledger repairs the cache
            current_app.logger.warning(
                f"[totals-drift] game={self.game_id} cached={cached} history={derived}"
            )
            return derived
        return cached

    @staticmethod
    def winners(totals: Dict[int, int]) -> List[int]:
        """Every membership holding the top total; more than one means a tie."""
        if not totals:
            return []
        top = max(totals.values())
        return [gp_id for gp_id, total in totals.items() if total == top]

    @staticmethod
    def leader(totals: Dict[int, int], roster: List[int]):
        if not totals:
            return [], 0
        ranked = sorted(totals.values(), reverse=True)
        leaders = [gp_id for gp_id in roster if totals.get(gp_id) == ranked[0]]
        margin = ranked[0] - ranked[1] if len(ranked) > 1 else 0
        return leaders, margin

    def _cells(self, rounds, roster) -> Dict[int, Dict[int, Cell]]:
        by_number = {r.round_number: r for r in rounds}
        grid = {}
        for n in range(1, self.rules.total_rounds + 1):
            rnd = by_number.get(n)
            row = {}
            for gp_id in roster:
                score = rnd.score_for(gp_id) if rnd else None
                if rnd is None:
                    row[gp_id] = Cell(CellState.FUTURE)
                elif score is None or score.tricks_won is None:
                    row[gp_id] = Cell(CellState.PENDING, bid=score.bid if score else None)
                else:
                    row[gp_id] = Cell(
                        CellState.SETTLED,
                        bid=score.bid,
                        tricks_won=score.tricks_won,
                        bonus=score.bonus_points,
                        score=score.round_score,
                    )
            grid[n] = row
        return grid
