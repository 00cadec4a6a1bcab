import logging

import pytest
from sqlalchemy.exc import OperationalError

from tricktally import db
from tricktally.models import Game, GamePlayer, Round, Score
from tricktally.services.games.errors import GameNotFound, RoundNotFound, StoreFailure, ValidationError
from tricktally.services.games.ledger import RoundLedger, as_int
from tricktally.services.games.scoring import score_round


def _totals(game_id):
    return {gp.id: gp.total_score for gp in GamePlayer.query.filter_by(game_id=game_id).order_by(GamePlayer.id)}


def _history_sums(game_id):
    sums = {gp.id: 0 for gp in GamePlayer.query.filter_by(game_id=game_id)}
    for s in Score.query.join(Round).filter(Round.game_id == game_id, Score.tricks_won.isnot(None)):
        sums[s.game_player_id] += s.round_score
    return sums


def _snapshot(game_id):
    return sorted(
        (s.round.round_number, s.game_player_id, s.bid, s.tricks_won, s.bonus_points, s.round_score)
        for s in Score.query.join(Round).filter(Round.game_id == game_id)
    )


def test_as_int_rejects_junk():
    assert as_int('7', 'bid') == 7
    assert as_int(-3, 'bonus') == -3
    assert as_int(' -4 ', 'bonus') == -4
    for bad in (None, True, 1.5, 'x', '', '--5', '²'):
        with pytest.raises(ValidationError):
            as_int(bad, 'bid')
    with pytest.raises(ValidationError):
        as_int(-1, 'bid', minimum=0)


def test_record_bids_creates_pending_round_for_every_player(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    rnd = ledger.record_bids(1, {members[0]: 1})

    assert rnd.round_number == 1
    assert rnd.is_pending
    rows = {s.game_player_id: s for s in Score.query.filter_by(round_id=rnd.id)}
    assert set(rows) == set(members)
    assert rows[members[0]].bid == 1
    assert rows[members[1]].bid == 0
    assert all(s.tricks_won is None and s.bonus_points == 0 and s.round_score == 0 for s in rows.values())


def test_record_bids_is_idempotent(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    bids = {members[0]: 1, members[1]: 0, members[2]: 1}
    ledger.record_bids(1, bids)
    first = _snapshot(game_id)
    ledger.record_bids(1, bids)
    assert _snapshot(game_id) == first
    assert Round.query.filter_by(game_id=game_id).count() == 1


def test_record_bids_allows_live_editing(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    ledger.record_bids(1, {members[0]: 0})
    ledger.record_bids(1, {members[0]: 1})
    row = Score.query.filter_by(game_player_id=members[0]).one()
    assert row.bid == 1
    assert row.tricks_won is None


def test_one_pending_round_after_bids(make_game, settle_rounds):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 3, members)
    ledger.record_bids(4, {gp_id: 1 for gp_id in members})

    pending = [r.round_number for r in Round.query.filter_by(game_id=game_id) if r.is_pending]
    assert pending == [4]


def test_record_bids_rejects_out_of_sequence_rounds(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    with pytest.raises(ValidationError):
        ledger.record_bids(2, {members[0]: 1})
    ledger.record_bids(1, {members[0]: 1})
    with pytest.raises(ValidationError):
        # round 1 is still pending
        ledger.record_bids(2, {members[0]: 1})
    with pytest.raises(ValidationError):
        ledger.record_bids(11, {members[0]: 1})
    with pytest.raises(ValidationError):
        ledger.record_bids(0, {members[0]: 1})
    with pytest.raises(ValidationError):
        ledger.record_bids(1, {members[0]: -1})


def test_unknown_membership_is_skipped_with_warning(make_game, caplog):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    with caplog.at_level(logging.WARNING):
        ledger.record_bids(1, {members[0]: 1, 999: 3})
    assert 'player=999' in caplog.text
    assert Score.query.filter_by(game_player_id=999).count() == 0

    with caplog.at_level(logging.WARNING):
        ledger.settle_round(1, {
            members[0]: {'tricks_won': 1},
            members[1]: {'tricks_won': 0},
            members[2]: {'tricks_won': 0},
            999: {'bid': 0, 'tricks_won': 0},
        })
    assert _totals(game_id)[members[0]] == 20


def test_settle_uses_saved_bids_and_updates_totals(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    ledger.record_bids(1, {members[0]: 1, members[1]: 0, members[2]: 1})
    rnd = ledger.settle_round(1, {
        members[0]: {'tricks_won': 1},
        members[1]: {'tricks_won': 0, 'bonus': 10},
        members[2]: {'tricks_won': 0},
    })
    assert not rnd.is_pending
    assert _totals(game_id) == {members[0]: 20, members[1]: 20, members[2]: -10}


def test_settle_creates_round_when_bids_were_never_saved(make_game):
    game_id, members = make_game('Alice', 'Bob', 'Cara')
    ledger = RoundLedger(game_id)
    # Scenario A: a bid far above the hand size is accepted and scored
    ledger.settle_round(1, {
        members[0]: {'bid': 5, 'tricks_won': 1, 'bonus': 0},
        members[1]: {'bid': 3, 'tricks_won': 0, 'bonus': 0},
        members[2]: {'bid': 2, 'tricks_won': 0, 'bonus': 0},
    })
    rows = {s.game_player_id: s.round_score for s in Score.query.all()}
    assert rows[members[0]] == -40
    assert rows[members[1]] == -30
    assert rows[members[2]] == -20


def test_partial_settle_keeps_round_pending(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    rnd = ledger.settle_round(1, {members[0]: {'bid': 1, 'tricks_won': 1}})
    assert rnd.is_pending
    assert _totals(game_id)[members[0]] == 20
    rnd = ledger.settle_round(1, {
        members[1]: {'bid': 0, 'tricks_won': 0},
        members[2]: {'bid': 0, 'tricks_won': 1},
    })
    assert not rnd.is_pending
    assert _totals(game_id) == {members[0]: 20, members[1]: 10, members[2]: -10}


def test_resettling_does_not_double_count(make_game):
    game_id, members = make_game('Alice', 'Bob')
    ledger = RoundLedger(game_id)
    outcomes = {
        members[0]: {'bid': 1, 'tricks_won': 1, 'bonus': 0},
        members[1]: {'bid': 0, 'tricks_won': 0, 'bonus': 0},
    }
    ledger.settle_round(1, outcomes)
    ledger.settle_round(1, outcomes)
    assert _totals(game_id) == {members[0]: 20, members[1]: 10}


def test_settle_validates_before_writing(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    with pytest.raises(ValidationError):
        ledger.settle_round(1, {members[0]: {'bid': 1}})
    with pytest.raises(ValidationError):
        ledger.settle_round(1, {members[0]: {'bid': 1, 'tricks_won': -2}})
    with pytest.raises(ValidationError):
        ledger.settle_round(1, {})
    assert Round.query.count() == 0


def test_correction_adjusts_only_the_edited_player(make_game, settle_rounds):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 4, members)
    before = _totals(game_id)

    # Scenario E: round 4 bonus goes from 0 to 20
    ledger.update_settled_round(4, {members[1]: {'bid': 0, 'tricks_won': 0, 'bonus': 20}})

    after = _totals(game_id)
    assert after[members[1]] == before[members[1]] + 20
    assert after[members[0]] == before[members[0]]
    assert after[members[2]] == before[members[2]]
    row = Score.query.join(Round).filter(Round.round_number == 4, Score.game_player_id == members[1]).one()
    assert row.round_score == score_round(4, 0, 0, 20)


def test_correction_of_missing_round_is_fatal(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    with pytest.raises(RoundNotFound):
        ledger.update_settled_round(3, {members[0]: {'bid': 0, 'tricks_won': 0}})


def test_correction_of_pending_round_is_rejected(make_game):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    ledger.record_bids(1, {members[0]: 1})
    with pytest.raises(ValidationError):
        ledger.update_settled_round(1, {members[0]: {'bid': 1, 'tricks_won': 1}})


def test_bids_on_settled_round_rescore_it(make_game):
    game_id, members = make_game('Alice', 'Bob')
    ledger = RoundLedger(game_id)
    ledger.settle_round(1, {
        members[0]: {'bid': 1, 'tricks_won': 1},
        members[1]: {'bid': 0, 'tricks_won': 0},
    })
    ledger.record_bids(1, {members[0]: 0})
    row = Score.query.filter_by(game_player_id=members[0]).one()
    assert row.tricks_won == 1
    assert row.round_score == -10
    assert _totals(game_id)[members[0]] == -10


def test_totals_match_history_after_mixed_operations(make_game, settle_rounds):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 5, members, tricks_for=lambda n, gp_id: 1 if gp_id == members[0] and n % 2 else 0)
    ledger.update_settled_round(2, {members[2]: {'bid': 2, 'tricks_won': 2, 'bonus': 30}})
    ledger.record_bids(6, {gp_id: 1 for gp_id in members})
    ledger.settle_round(6, {gp_id: {'tricks_won': 1, 'bonus': 0} for gp_id in members})
    ledger.update_settled_round(6, {members[0]: {'bid': 1, 'tricks_won': 3, 'bonus': -10}})
    assert _totals(game_id) == _history_sums(game_id)


def test_final_round_finishes_game_and_ties_keep_one_winner(make_game, settle_rounds):
    game_id, members = make_game('Alice', 'Bob')
    ledger = RoundLedger(game_id)
    # Scenario D: both players reach 120 before the final round
    settle_rounds(ledger, 9, members)
    ledger.settle_round(10, {gp_id: {'bid': 1, 'tricks_won': 0, 'bonus': -(450 - 120) + 10} for gp_id in members})

    game = db.session.get(Game, game_id)
    totals = _totals(game_id)
    assert totals[members[0]] == totals[members[1]] == 120
    assert game.status == 'finished'
    assert game.winner_id in members


def test_finish_picks_strictly_highest_total(make_game, settle_rounds):
    game_id, members = make_game('Alice', 'Bob')
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 10, members, tricks_for=lambda n, gp_id: 1 if gp_id == members[0] else 0)
    game = db.session.get(Game, game_id)
    assert game.status == 'finished'
    assert game.winner_id == members[1]


def test_correction_after_finish_repicks_winner(make_game, settle_rounds):
    game_id, members = make_game('Alice', 'Bob')
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 10, members, tricks_for=lambda n, gp_id: 1 if gp_id == members[0] else 0)
    # Round 3 goes from -30 to 2030, lifting -550 to 1510
    ledger.update_settled_round(3, {members[0]: {'bid': 0, 'tricks_won': 0, 'bonus': 2000}})
    assert _totals(game_id) == {members[0]: 1510, members[1]: 550}
    assert db.session.get(Game, game_id).winner_id == members[0]


def test_resettling_after_finish_repicks_winner(make_game, settle_rounds):
    game_id, members = make_game('Alice', 'Bob')
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 10, members, tricks_for=lambda n, gp_id: 1 if gp_id == members[0] else 0)
    assert db.session.get(Game, game_id).winner_id == members[1]

    ledger.settle_round(3, {members[0]: {'bid': 0, 'tricks_won': 0, 'bonus': 2000}})
    game = db.session.get(Game, game_id)
    assert _totals(game_id) == {members[0]: 1510, members[1]: 550}
    assert game.status == 'finished'
    assert game.winner_id == members[0]


def test_reset_clears_everything(make_game, settle_rounds):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 10, members)
    ledger.reset()

    game = db.session.get(Game, game_id)
    assert Round.query.filter_by(game_id=game_id).count() == 0
    assert Score.query.count() == 0
    assert set(_totals(game_id).values()) == {0}
    assert game.status == 'active'
    assert game.winner_id is None
    # Round 1 is open again
    ledger.record_bids(1, {members[0]: 1})


def test_reconcile_repairs_drifted_cache(make_game, settle_rounds):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)
    settle_rounds(ledger, 2, members)
    gp = db.session.get(GamePlayer, members[1])
    gp.total_score = 999
    db.session.commit()

    repaired = ledger.reconcile()
    assert repaired == {members[1]: 30}
    assert _totals(game_id) == _history_sums(game_id)
    assert ledger.reconcile() == {}


def test_store_failure_rolls_back(make_game, monkeypatch):
    game_id, members = make_game()
    ledger = RoundLedger(game_id)

    def _boom():
        raise OperationalError('COMMIT', {}, Exception('disk full'))

    monkeypatch.setattr(db.session, 'commit', _boom)
    with pytest.raises(StoreFailure):
        ledger.record_bids(1, {members[0]: 1})
    monkeypatch.undo()
    assert Round.query.filter_by(game_id=game_id).count() == 0


def test_unknown_game(flask_app):
    with pytest.raises(GameNotFound):
        RoundLedger(404).record_bids(1, {1: 1})
