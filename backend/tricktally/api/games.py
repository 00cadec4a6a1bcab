from flask import Blueprint, jsonify, request, current_app
from tricktally import db, socketio
from tricktally.models import Game
from tricktally.services.games import roster
from tricktally.services.games.controller import MatchController, Phase
from tricktally.services.games.draft import RoundDraft
from tricktally.services.games.errors import GameNotFound, RoundNotFound, ScorepadError, ValidationError
from tricktally.services.games.ledger import RoundLedger


games = Blueprint('games', __name__)


@games.errorhandler(ScorepadError)
def handle_scorepad_error(exc):
    if exc.status_code >= 500:
        current_app.logger.error(f"[api-error] {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


def _emit_state_update(game_id: int) -> None:
    if not current_app.config.get('EMIT_STATE_UPDATES', 1):
        return
    socketio.emit('state_update', {'game_id': game_id}, to=f"game:{game_id}", namespace='/ws')


def _get_game_or_404(game_id: int) -> Game:
    game = db.session.get(Game, game_id)
    if game is None:
        raise GameNotFound(game_id)
    return game


def _view(game: Game) -> dict:
    payload = game.to_dict()
    payload.update(MatchController(game.id).state().to_dict())
    return payload


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@games.route('', methods=['GET'])
def list_games():
    return jsonify([g.to_dict() for g in roster.list_games()])


@games.route('', methods=['POST'])
def start_new_match():
    data = _json_body()
    game = roster.start_new_match(
        data.get('player_names'),
        min_players=int(current_app.config.get('MIN_PLAYERS', 2)),
    )
    return jsonify({'message': 'New game created!', 'game_id': game.id}), 201


@games.route('/captain', methods=['POST'])
def roll_for_captain():
    data = _json_body()
    captain, order = roster.roll_for_captain(data.get('player_names'))
    return jsonify({'captain': captain, 'player_names': order})


@games.route('/<int:game_id>', methods=['GET'])
def view_match(game_id):
    return jsonify(_view(_get_game_or_404(game_id)))


@games.route('/<int:game_id>', methods=['DELETE'])
def delete_game(game_id):
    roster.delete_game(game_id)
    _emit_state_update(game_id)
    return jsonify({'message': f'Game {game_id} deleted'})


@games.route('/<int:game_id>/stats', methods=['GET'])
def match_stats(game_id):
    _get_game_or_404(game_id)
    return jsonify(MatchController(game_id).state().stats)


@games.route('/<int:game_id>/rounds/<int:round_number>/bids', methods=['POST'])
def submit_bids(game_id, round_number):
    data = _json_body()
    bids = data.get('bids')
    if not isinstance(bids, dict):
        raise ValidationError('bids must map player ids to bids')
    _get_game_or_404(game_id)
    RoundLedger(game_id).record_bids(round_number, bids)
    _emit_state_update(game_id)
    return jsonify(MatchController(game_id).state().to_dict())


@games.route('/<int:game_id>/rounds/<int:round_number>/outcome', methods=['POST'])
def submit_outcome(game_id, round_number):
    data = _json_body()
    game = _get_game_or_404(game_id)
    state = MatchController(game_id).state()
    if state.is_over or state.round_number != round_number:
        raise ValidationError(f'Round {round_number} is not the round being played')
    draft = RoundDraft(round_number)
    if state.phase == Phase.SCORING:
        draft.seed_bids(state.pending_bids)
    draft.apply(data.get('scores'))
    member_ids = [gp.id for gp in game.players]
    member_ids += [gp_id for gp_id in draft.touched() if gp_id not in member_ids]
    RoundLedger(game_id).settle_round(round_number, draft.outcomes(member_ids))
    _emit_state_update(game_id)
    return jsonify(_view(_get_game_or_404(game_id)))


@games.route('/<int:game_id>/rounds/<int:round_number>', methods=['PUT'])
def correct_round(game_id, round_number):
    data = _json_body()
    scores = data.get('scores')
    if not isinstance(scores, dict) or not scores:
        raise ValidationError('scores must map player ids to {bid, tricks_won, bonus}')
    _get_game_or_404(game_id)
    RoundLedger(game_id).update_settled_round(round_number, scores)
    _emit_state_update(game_id)
    return jsonify(MatchController(game_id).state().to_dict())


@games.route('/<int:game_id>/rounds/<int:round_number>/scores/<int:game_player_id>', methods=['PATCH'])
def edit_past_cell(game_id, round_number, game_player_id):
    data = _json_body()
    _get_game_or_404(game_id)
    rnd = RoundLedger(game_id).store.get_round(round_number)
    if rnd is None:
        raise RoundNotFound(game_id, round_number)
    if rnd.is_pending:
        raise ValidationError(f'Round {round_number} is not settled yet')
    current = rnd.score_for(game_player_id)
    if current is None:
        # The ledger logs and skips memberships without a row in this round
        entry = {'bid': data.get('bid', 0), 'tricks_won': data.get('tricks_won', 0), 'bonus': data.get('bonus', 0)}
    else:
        # Fields left out of the body keep their stored value
        entry = {
            'bid': data.get('bid', current.bid),
            'tricks_won': data.get('tricks_won', current.tricks_won),
            'bonus': data.get('bonus', current.bonus_points),
        }
    RoundLedger(game_id).update_settled_round(round_number, {game_player_id: entry})
    _emit_state_update(game_id)
    return jsonify(MatchController(game_id).state().to_dict())


@games.route('/<int:game_id>/reset', methods=['POST'])
def reset_match(game_id):
    _get_game_or_404(game_id)
    RoundLedger(game_id).reset()
    _emit_state_update(game_id)
    return jsonify(_view(_get_game_or_404(game_id)))


@games.route('/<int:game_id>/reconcile', methods=['POST'])
def reconcile_totals(game_id):
    _get_game_or_404(game_id)
    repaired = RoundLedger(game_id).reconcile()
    if repaired:
        _emit_state_update(game_id)
    return jsonify({'repaired': repaired})
