from vibelink.services.sessions.rounds import (
    FIRST_ROUND, LAST_ROUND, SEQUENCE, Round, next_round, round_at, round_index,
)


def test_sequence_order():
    assert [r.value for r in SEQUENCE] == ['questions', 'synergy', 'chat', 'humor', 'results']
    assert FIRST_ROUND is Round.QUESTIONS
    assert LAST_ROUND is Round.RESULTS


def test_next_round_walks_the_sequence():
    assert next_round('questions') is Round.SYNERGY
    assert next_round('synergy') is Round.CHAT
    assert next_round('chat') is Round.HUMOR
    assert next_round('humor') is Round.RESULTS


def test_last_round_is_exhausted():
    assert next_round('results') is None
    assert next_round(Round.RESULTS) is None


def test_missing_or_unknown_label_starts_at_first_round():
    assert next_round(None) is Round.QUESTIONS
    assert next_round('') is Round.QUESTIONS
    assert next_round('blindChat') is Round.QUESTIONS


def test_index_matches_position():
    for position, r in enumerate(SEQUENCE):
        assert r.position == position
        assert round_index(r.value) == position
        assert round_at(position) is r
    assert round_index('nope') is None
    assert round_at(-1) is None
    assert round_at(len(SEQUENCE)) is None


def test_parse():
    assert Round.parse('humor') is Round.HUMOR
    assert Round.parse(Round.CHAT) is Round.CHAT
    assert Round.parse('HUMOR') is None
    assert Round.parse(None) is None
