"""Error taxonomy for the game services.

Every error carries the HTTP status the API answers with.
"""


class ScorepadError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class ValidationError(ScorepadError):
    status_code = 400


class GameNotFound(ScorepadError):
    status_code = 404

    def __init__(self, game_id):
        super().__init__(f'Game {game_id} not found')
        self.game_id = game_id


class RoundNotFound(ScorepadError):
    status_code = 404

    def __init__(self, game_id, round_number):
        super().__init__(f'Round {round_number} not found for game {game_id}')
        self.game_id = game_id
        self.round_number = round_number


class MembershipNotFound(ScorepadError):
    """Score references a membership outside the game; logged, never fatal."""
    status_code = 404

    def __init__(self, game_id, game_player_id):
        super().__init__(f'Player {game_player_id} is not part of game {game_id}')
        self.game_id = game_id
        self.game_player_id = game_player_id


class StoreFailure(ScorepadError):
    status_code = 500
