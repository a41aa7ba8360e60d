import pytest

from vibelink import NAMESPACE, socketio
from vibelink.auth import generate_token
from vibelink.services.sessions import activity
from vibelink.socketio_events import registry


@pytest.fixture()
def tokens(users):
    return {u.username: generate_token(u) for u in users}


def events(sio_client, name=None):
    received = sio_client.get_received(NAMESPACE)
    if name is None:
        return received
    return [pkt['args'][0] for pkt in received if pkt['name'] == name]


def ack(sio_client, event, data=None):
    if data is None:
        return sio_client.emit(event, namespace=NAMESPACE, callback=True)
    return sio_client.emit(event, data, namespace=NAMESPACE, callback=True)


def joined(sio_connect, token, session_id):
    sio_client = sio_connect(token)
    result = ack(sio_client, 'join-session', {'sessionId': session_id})
    assert result['success'] is True, result
    events(sio_client)  # flush
    return sio_client


def test_connect_requires_a_valid_token(sio_connect):
    assert not sio_connect().is_connected(NAMESPACE)
    assert not sio_connect('not-a-jwt').is_connected(NAMESPACE)


def test_connect_greets_the_user(sio_connect, users, tokens):
    sio_client = sio_connect(tokens['alice'])
    assert sio_client.is_connected(NAMESPACE)
    greeting = events(sio_client, 'connected')
    assert greeting == [{'userId': users[0].id, 'username': 'alice'}]


def test_join_missing_session(sio_connect, tokens):
    sio_client = sio_connect(tokens['alice'])
    assert ack(sio_client, 'join-session', {'sessionId': 'nope'}) == {
        'success': False, 'error': 'Game session not found',
    }
    assert registry.members('nope') == set()
    sid = socketio.server.manager.sid_from_eio_sid(sio_client.eio_sid, NAMESPACE)
    assert registry.get(sid)['session_id'] is None
    assert ack(sio_client, 'join-session') == {'success': False, 'error': 'sessionId is required'}
    assert ack(sio_client, 'join-session', 'nope')['error'] == 'Event payload must be an object'


def test_non_participant_cannot_join(sio_connect, users, tokens, make_session):
    alice, bob, cara = users
    session = make_session(alice.id, bob.id)
    sio_client = sio_connect(tokens['cara'])
    result = ack(sio_client, 'join-session', {'sessionId': session.id})
    assert result == {'success': False, 'error': 'You are not participating in this session'}
    assert cara.id not in registry.members(session.id)


def test_join_notifies_other_members(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)

    bob_client = sio_connect(tokens['bob'])
    events(bob_client)
    result = ack(bob_client, 'join-session', {'sessionId': session.id})
    assert result['success'] is True
    assert result['data']['session']['id'] == session.id
    assert result['data']['online'] == sorted([alice.id, bob.id])

    assert events(alice_client, 'user-joined') == [{'userId': bob.id, 'username': 'bob'}]
    assert events(bob_client, 'user-joined') == []


def test_submit_response_broadcasts_without_content(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    bob_client = joined(sio_connect, tokens['bob'], session.id)

    result = ack(alice_client, 'submit-response', {
        'sessionId': session.id, 'roundNumber': 1, 'roundType': 'questions', 'responseText': 'a secret',
    })
    assert result['success'] is True
    assert result['data']['response']['response_text'] == 'a secret'

    notices = events(bob_client, 'response-submitted')
    assert notices == [{'userId': alice.id, 'username': 'alice', 'roundNumber': 1}]
    assert 'a secret' not in str(notices)


def test_submit_response_rejects_bad_round(sio_connect, users, tokens, make_session):
    session = make_session(users[0].id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    result = ack(alice_client, 'submit-response', {'sessionId': session.id, 'roundNumber': 0})
    assert result == {'success': False, 'error': 'roundNumber must be a positive integer'}


def test_rounds_are_broadcast_until_finished(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    bob_client = joined(sio_connect, tokens['bob'], session.id)

    started = ack(alice_client, 'start-game', {'sessionId': session.id})
    assert started['data']['session']['game_state'] == 'questions'
    assert events(bob_client, 'game-started')[0]['session']['status'] == 'in_progress'
    assert ack(bob_client, 'start-game', {'sessionId': session.id})['success'] is False

    for expected in ('synergy', 'chat', 'humor', 'results'):
        result = ack(alice_client, 'next-round', {'sessionId': session.id})
        assert result['data']['session']['game_state'] == expected
    changes = events(bob_client, 'round-changed')
    assert [(c['gameState'], c['round']) for c in changes] == [
        ('synergy', 1), ('chat', 2), ('humor', 3), ('results', 4),
    ]

    finished = ack(alice_client, 'next-round', {'sessionId': session.id})
    assert finished['data']['session']['status'] == 'finished'
    done = events(bob_client, 'game-finished')
    assert len(done) == 1
    assert done[0]['sessionId'] == session.id

    again = ack(alice_client, 'next-round', {'sessionId': session.id})
    assert again == {'success': False, 'error': 'Session is already finished'}


def test_next_round_with_stale_expectation_is_rejected(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    bob_client = joined(sio_connect, tokens['bob'], session.id)
    ack(alice_client, 'start-game', {'sessionId': session.id})

    first = ack(alice_client, 'next-round', {'sessionId': session.id, 'expectedGameState': 'questions'})
    second = ack(bob_client, 'next-round', {'sessionId': session.id, 'expectedGameState': 'questions'})
    assert first['success'] is True
    assert second == {'success': False, 'error': 'Round already advanced'}
    assert [c['gameState'] for c in events(bob_client, 'round-changed')] == ['synergy']


def test_send_message_broadcasts(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    bob_client = joined(sio_connect, tokens['bob'], session.id)

    result = ack(alice_client, 'send-message', {'sessionId': session.id, 'message': 'hello', 'roundType': 'chat'})
    assert result['success'] is True
    received = events(bob_client, 'new-message')
    assert len(received) == 1
    assert received[0]['id'] == result['data']['id']
    assert received[0]['message'] == 'hello'
    assert received[0]['roundType'] == 'chat'
    assert received[0]['sender'] == {'id': alice.id, 'username': 'alice'}

    anonymous = ack(alice_client, 'send-message', {'sessionId': session.id, 'message': 'psst', 'isAnonymous': True})
    assert anonymous['success'] is True
    assert events(bob_client, 'new-message')[0]['sender'] is None

    assert ack(alice_client, 'send-message', {'sessionId': session.id, 'message': '  '}) == {
        'success': False, 'error': 'message is required',
    }


def test_vote_meme_keeps_one_reaction_per_voter(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    meme = activity.upload_meme(session.id, alice.id, 'https://example.com/cat.png', 'cat')
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    bob_client = joined(sio_connect, tokens['bob'], session.id)

    first = ack(bob_client, 'vote-meme', {'sessionId': session.id, 'memeId': meme.id, 'reactionType': 'laugh'})
    second = ack(bob_client, 'vote-meme', {'sessionId': session.id, 'memeId': meme.id, 'reactionType': 'love'})
    assert first['data']['meme']['total_reactions'] == 1
    assert second['data']['meme']['total_reactions'] == 1
    third = ack(alice_client, 'vote-meme', {'sessionId': session.id, 'memeId': meme.id, 'reactionType': 'laugh'})
    assert third['data']['meme']['total_reactions'] == 2

    votes = events(alice_client, 'meme-voted')
    assert [(v['userId'], v['reactionType'], v['totalReactions']) for v in votes] == [
        (bob.id, 'laugh', 1), (bob.id, 'love', 1), (alice.id, 'laugh', 2),
    ]
    missing = ack(bob_client, 'vote-meme', {'sessionId': session.id, 'memeId': 'nope', 'reactionType': 'laugh'})
    assert missing == {'success': False, 'error': 'Meme not found'}


def test_audience_votes_accumulate(sio_connect, users, tokens, make_session):
    alice, bob, cara = users
    session = make_session(alice.id, bob.id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    # Audience members vote without being participants
    cara_client = sio_connect(tokens['cara'])

    payload = {'sessionId': session.id, 'category': 'funniest', 'nomineeId': alice.id}
    assert ack(cara_client, 'audience-vote', payload)['data'] == {'totalVotes': 1}
    assert ack(cara_client, 'audience-vote', payload)['data'] == {'totalVotes': 2}

    recorded = events(alice_client, 'audience-vote-recorded')
    assert [r['totalVotes'] for r in recorded] == [1, 2]
    assert recorded[0] == {'category': 'funniest', 'nomineeId': alice.id, 'totalVotes': 1}

    outsider = ack(cara_client, 'audience-vote', dict(payload, nomineeId=cara.id))
    assert outsider == {'success': False, 'error': 'Nominee is not a participant in this session'}


def test_get_session_includes_matches(sio_connect, users, tokens, make_session):
    from vibelink.services.sessions import matching

    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    matching.calculate_matches(session.id, scorer=lambda s, responses: [
        {'user1_id': bob.id, 'user2_id': alice.id, 'connection_score': 77},
    ])
    sio_client = sio_connect(tokens['alice'])
    result = ack(sio_client, 'get-session', {'sessionId': session.id})
    assert result['success'] is True
    assert result['data']['id'] == session.id
    assert [m['connection_score'] for m in result['data']['matches']] == [77]


def test_disconnect_notifies_the_session(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    alice_client = joined(sio_connect, tokens['alice'], session.id)
    bob_client = joined(sio_connect, tokens['bob'], session.id)

    alice_client.disconnect(namespace=NAMESPACE)
    assert events(bob_client, 'user-left') == [{'userId': alice.id, 'username': 'alice'}]
    assert registry.members(session.id) == {bob.id}


def test_switching_sessions_notifies_the_previous_one(sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    first = make_session(alice.id, bob.id)
    second = make_session(alice.id)
    alice_client = joined(sio_connect, tokens['alice'], first.id)
    bob_client = joined(sio_connect, tokens['bob'], first.id)

    result = ack(alice_client, 'join-session', {'sessionId': second.id})
    assert result['success'] is True
    assert events(bob_client, 'user-left') == [{'userId': alice.id, 'username': 'alice'}]
    assert events(alice_client, 'user-left') == []
    assert registry.members(first.id) == {bob.id}
    assert registry.members(second.id) == {alice.id}

    # Broadcasts to the old session no longer reach the connection
    ack(bob_client, 'send-message', {'sessionId': first.id, 'message': 'still here?'})
    assert events(alice_client, 'new-message') == []


def test_rest_mirror_broadcasts_to_socket_members(client, sio_connect, users, tokens, make_session):
    alice, bob, _ = users
    session = make_session(alice.id, bob.id)
    bob_client = joined(sio_connect, tokens['bob'], session.id)

    res = client.post(f'/api/sessions/{session.id}/start', headers={'Authorization': f"Bearer {tokens['alice']}"})
    assert res.status_code == 200
    assert len(events(bob_client, 'game-started')) == 1
