from flask import Blueprint, jsonify
from tricktally.services.games import roster

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the tricktally score keeper!'})

@main.route('/players')
def list_players():
    return jsonify([p.to_dict() for p in roster.list_players()])

@main.route('/players/available')
def available_players():
    """Known players for the new-game screen, most games played first."""
    return jsonify(roster.available_players())

@main.route('/leaderboard')
def leaderboard():
    return jsonify(roster.leaderboard())
