"""Read-time bidding statistics over settled rounds.

Nothing here touches the database: the controller hands over plain round
results and gets plain dictionaries back, so the same history always yields
the same numbers.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .scoring import STANDARD_RULES, Ruleset

CONSERVATIVE_BELOW = 90.0
AGGRESSIVE_ABOVE = 110.0


@dataclass
class RoundResult:
    round_number: int
    bids: Dict[int, int]
    tricks: Dict[int, int]
    scores: Dict[int, int] = field(default_factory=dict)
    bonuses: Dict[int, int] = field(default_factory=dict)


def classify_bid_percentage(pct: Optional[float]) -> Optional[str]:
    if pct is None:
        return None
    if pct < CONSERVATIVE_BELOW:
        return 'conservative'
    if pct > AGGRESSIVE_ABOVE:
        return 'aggressive'
    return 'balanced'


def _percentage(bids: int, cards: int) -> Optional[float]:
    if cards <= 0:
        return None
    return bids / cards * 100.0


def round_accuracy(result: RoundResult, rules: Ruleset = STANDARD_RULES) -> dict:
    cards = rules.cards_in_round(result.round_number)
    total_bids = sum(result.bids.values())
    difference = total_bids - cards
    if difference > 0:
        signal = 'over'
    elif difference < 0:
        signal = 'under'
    else:
        signal = 'exact'
    return {
        'round_number': result.round_number,
        'cards': cards,
        'total_bids': total_bids,
        'difference': difference,
        'signal': signal,
    }


def player_bidding(results: List[RoundResult], roster: List[int], rules: Ruleset = STANDARD_RULES) -> Dict[int, dict]:
    cards = sum(rules.cards_in_round(r.round_number) for r in results)
    players = {}
    for gp_id in roster:
        bids = [r.bids[gp_id] for r in results if gp_id in r.bids]
        exact = sum(1 for r in results if gp_id in r.bids and r.tricks.get(gp_id) == r.bids[gp_id])
        pct = _percentage(sum(bids), cards)
        players[gp_id] = {
            'total_bids': sum(bids),
            'bid_percentage': None if pct is None else round(pct, 1),
            'zero_bids': sum(1 for b in bids if b == 0),
            'exact_bids': exact,
        }
    return players


def lead_history(results: List[RoundResult], roster: List[int]) -> dict:
    """Leaders after each settled round and how often a sole leader was overtaken.

    A tied round keeps the previous sole leader, so a tie is not counted as a
    lead change on its own.
    """
    running = {gp_id: 0 for gp_id in roster}
    by_round = []
    lead_changes = 0
    sole_leader = None
    for r in sorted(results, key=lambda res: res.round_number):
        for gp_id, pts in r.scores.items():
            if gp_id in running:
                running[gp_id] += pts
        top = max(running.values()) if running else 0
        leaders = [gp_id for gp_id in roster if running[gp_id] == top]
        by_round.append({'round_number': r.round_number, 'leaders': leaders, 'top_score': top})
        if len(leaders) == 1:
            if sole_leader is not None and leaders[0] != sole_leader:
                lead_changes += 1
            sole_leader = leaders[0]
    return {'by_round': by_round, 'lead_changes': lead_changes}


def bidding_summary(results: List[RoundResult], roster: List[int], rules: Ruleset = STANDARD_RULES) -> dict:
    """Table-wide and per-player bidding accuracy plus the lead history."""
    total_cards = sum(rules.cards_in_round(r.round_number) for r in results)
    total_bids = sum(sum(r.bids.values()) for r in results)
    pct = _percentage(total_bids, total_cards)
    players = player_bidding(results, roster, rules)

    most_aggressive = most_conservative = most_cautious = None
    rated = [gp_id for gp_id in roster if players[gp_id]['bid_percentage'] is not None]
    if rated:
        # max/min keep the first of equal values, i.e. roster order
        most_aggressive = max(rated, key=lambda gp_id: players[gp_id]['bid_percentage'])
        most_conservative = min(rated, key=lambda gp_id: players[gp_id]['bid_percentage'])
    if roster and any(players[gp_id]['zero_bids'] for gp_id in roster):
        most_cautious = max(roster, key=lambda gp_id: players[gp_id]['zero_bids'])

    return {
        'rounds': [round_accuracy(r, rules) for r in sorted(results, key=lambda res: res.round_number)],
        'total_cards': total_cards,
        'total_bids': total_bids,
        'bid_percentage': None if pct is None else round(pct, 1),
        'classification': classify_bid_percentage(pct),
        'players': players,
        'most_aggressive': most_aggressive,
        'most_conservative': most_conservative,
        'most_cautious': most_cautious,
        'tension': lead_history(results, roster),
    }
