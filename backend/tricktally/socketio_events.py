from flask_socketio import join_room, leave_room, emit
from tricktally import socketio
from flask import current_app


def _room_for(data):
    game_id = (data or {}).get('game_id')
    if game_id is None or str(game_id).strip() == '':
        emit('error', {'message': 'game_id is required'})
        return None
    return f"game:{str(game_id).strip()}"


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_game(data):
    room = _room_for(data)
    if not room:
        return
    join_room(room)
    current_app.logger.debug(f"[ws-join] room={room}")
    emit('joined', {'room': room})


def handle_leave_game(data):
    room = _room_for(data)
    if not room:
        return
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    # Primary namespace
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_game', handle_join_game, namespace='/ws')
    socketio.on_event('leave_game', handle_leave_game, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_game', handle_join_game, namespace='/')
        socketio.on_event('leave_game', handle_leave_game, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
