"""Filter matching, validation and wire form."""

import pytest

from nostr_client.event import Event
from nostr_client.exceptions import ValidationError
from nostr_client.filters import Filter, event_matches_filter, matches_any

from .conftest import SK1_PUBKEY, SK3_PUBKEY


def _event(kind=1, created_at=1000, pubkey=SK1_PUBKEY, tags=(), id="ab" * 32):
    event = Event(pubkey=pubkey, created_at=created_at, kind=kind, tags=tags, content="")
    event.id = id
    return event


@pytest.mark.parametrize(
    "event",
    [
        _event(),
        _event(kind=0),
        _event(kind=30023, created_at=0),
        _event(pubkey=SK3_PUBKEY, tags=[["t", "x"]]),
    ],
)
def test_empty_filter_matches_everything(event):
    assert Filter().matches(event)
    assert event_matches_filter(event, Filter(ids=[], authors=[], kinds=[]))


def test_kinds_filter_rejects_other_kinds():
    f = Filter(kinds=[1])
    assert f.matches(_event(kind=1))
    assert not f.matches(_event(kind=0))


def test_since_is_inclusive():
    f = Filter(since=1000)
    assert f.matches(_event(created_at=1000))
    assert f.matches(_event(created_at=1001))
    assert not f.matches(_event(created_at=999))


def test_until_is_exclusive():
    f = Filter(until=1000)
    assert f.matches(_event(created_at=999))
    assert not f.matches(_event(created_at=1000))


def test_authors_case_insensitive():
    assert Filter(authors=[SK1_PUBKEY.upper()]).matches(_event())
    assert not Filter(authors=[SK3_PUBKEY]).matches(_event())


def test_ids_case_insensitive():
    assert Filter(ids=["AB" * 32]).matches(_event())
    assert not Filter(ids=["cd" * 32]).matches(_event())


def test_values_within_a_field_are_ored():
    f = Filter(kinds=[0, 1], authors=[SK3_PUBKEY, SK1_PUBKEY])
    assert f.matches(_event(kind=0))
    assert f.matches(_event(kind=1))


def test_fields_are_anded():
    f = Filter(kinds=[1], authors=[SK3_PUBKEY])
    assert not f.matches(_event(kind=1))


def test_tag_filter_matches_second_element():
    f = Filter(tags={"t": ["nostr", "bitcoin"]})
    assert f.matches(_event(tags=[["t", "bitcoin"]]))
    assert not f.matches(_event(tags=[["t", "other"]]))
    assert not f.matches(_event(tags=[["p", "nostr"]]))
    assert not f.matches(_event(tags=[["t"]]))
    assert not f.matches(_event())


def test_multiple_tag_letters_are_anded():
    f = Filter(tags={"t": ["a"], "p": [SK1_PUBKEY]})
    assert f.matches(_event(tags=[["t", "a"], ["p", SK1_PUBKEY]]))
    assert not f.matches(_event(tags=[["t", "a"]]))


def test_matches_any():
    filters = [Filter(kinds=[0]), Filter(kinds=[1])]
    assert matches_any(_event(kind=1), filters)
    assert not matches_any(_event(kind=2), filters)


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


def test_validate_accepts_full_filter():
    Filter(
        ids=["ab" * 32],
        authors=[SK1_PUBKEY],
        kinds=[0, 1],
        since=1,
        until=2,
        limit=10,
        tags={"t": ["x"]},
    ).validate()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"ids": ["abc"]},
        {"authors": ["zz" * 32]},
        {"kinds": [-1]},
        {"since": 10, "until": 5},
        {"limit": 0},
        {"tags": {"tt": ["x"]}},
        {"tags": {"1": ["x"]}},
    ],
)
def test_validate_rejects(kwargs):
    with pytest.raises(ValidationError):
        Filter(**kwargs).validate()


# ---------------------------------------------------------------------------
# Wire form
# ---------------------------------------------------------------------------


def test_to_dict_omits_unset_fields():
    assert Filter().to_dict() == {}
    assert Filter(kinds=[1], limit=5).to_dict() == {"kinds": [1], "limit": 5}


def test_to_dict_prefixes_tag_keys():
    assert Filter(tags={"t": ["nostr"]}).to_dict() == {"#t": ["nostr"]}


def test_from_dict_reads_tag_keys():
    f = Filter.from_dict(
        {"authors": [SK1_PUBKEY], "since": 5, "#e": ["ab" * 32], "#toolong": ["x"]}
    )
    assert f.authors == [SK1_PUBKEY]
    assert f.since == 5
    assert f.tags == {"e": ["ab" * 32]}


def test_from_dict_rejects_non_object():
    with pytest.raises(ValidationError):
        Filter.from_dict([1])
