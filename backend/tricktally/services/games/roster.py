"""Player registry, match creation and cross-match standings."""
import random
import unicodedata
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from tricktally import db
from tricktally.models import Game, GamePlayer, Player
from .errors import GameNotFound, StoreFailure, ValidationError
from .scoring import STANDARD_RULES


def normalize_name(name: str) -> str:
    """Case- and accent-insensitive key for matching typed names to players."""
    decomposed = unicodedata.normalize('NFD', name)
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def _clean_names(player_names) -> List[str]:
    if not isinstance(player_names, (list, tuple)):
        raise ValidationError('player_names must be a list of names')
    return [n.strip() for n in player_names if isinstance(n, str) and n.strip()]


def start_new_match(player_names, min_players: Optional[int] = None) -> Game:
    """Create an active game for the given names, reusing known players."""
    if min_players is None:
        min_players = STANDARD_RULES.min_players
    names = _clean_names(player_names)
    if len(names) < min_players:
        raise ValidationError(f'At least {min_players} players are required')

    registry = {normalize_name(p.name): p for p in Player.query.all()}
    chosen = []
    for name in names:
        key = normalize_name(name)
        player = registry.get(key)
        if player is None:
            player = Player(name=name)
            db.session.add(player)
            registry[key] = player
        if player not in chosen:
            chosen.append(player)
    if len(chosen) < min_players:
        db.session.rollback()
        raise ValidationError(f'At least {min_players} different players are required')

    try:
        game = Game(status='active')
        db.session.add(game)
        db.session.flush()
        for player in chosen:
            db.session.add(GamePlayer(game_id=game.id, player=player, total_score=0))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[create] failed names={names} error={exc}")
        raise StoreFailure('Failed to create game') from exc
    current_app.logger.info(f"[create] game={game.id} players={[p.id for p in chosen]}")
    return game


def roll_for_captain(player_names, rng: Optional[random.Random] = None):
    """Pick a random captain and rotate the seating so the captain goes first."""
    names = _clean_names(player_names)
    if len(names) < STANDARD_RULES.min_players:
        raise ValidationError(f'At least {STANDARD_RULES.min_players} players are needed to elect a captain')
    rng = rng or random.Random()
    idx = rng.randrange(len(names))
    return names[idx], names[idx:] + names[:idx]


def list_players():
    return Player.query.order_by(Player.name).all()


def available_players() -> List[dict]:
    """Every known player with games played and points across all games."""
    out = []
    for p in Player.query.all():
        out.append({
            'id': p.id,
            'name': p.name,
            'games_played': len(p.memberships),
            'total_score': sum(gp.total_score or 0 for gp in p.memberships),
        })
    out.sort(key=lambda row: -row['games_played'])
    return out


def leaderboard() -> List[dict]:
    """Standings over finished games; every tied top scorer is credited a win."""
    results = (
        GamePlayer.query.join(Game, Game.id == GamePlayer.game_id)
        .filter(Game.status == 'finished')
        .all()
    )
    top_by_game = {}
    for gp in results:
        top_by_game[gp.game_id] = max(top_by_game.get(gp.game_id, gp.total_score), gp.total_score)

    stats = {}
    for gp in results:
        row = stats.setdefault(gp.player_id, {
            'id': gp.player_id,
            'name': gp.name,
            'games_played': 0,
            'wins': 0,
            'total_points': 0,
        })
        row['games_played'] += 1
        row['total_points'] += gp.total_score
        if gp.total_score == top_by_game[gp.game_id]:
            row['wins'] += 1

    board = []
    for row in stats.values():
        row['average'] = round(row['total_points'] / row['games_played'])
        board.append(row)
    board.sort(key=lambda r: (-r['wins'], -r['total_points']))
    return board


def list_games() -> List[Game]:
    return Game.query.order_by(Game.created_at.desc(), Game.id.desc()).all()


def delete_game(game_id: int) -> None:
    game = db.session.get(Game, game_id)
    if game is None:
        raise GameNotFound(game_id)
    try:
        # Break the winner FK before the memberships go
        game.winner_id = None
        db.session.flush()
        db.session.delete(game)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreFailure(f'Could not delete game {game_id}') from exc
    current_app.logger.info(f"[delete] game={game_id}")
