from leadpipe.ingest.fingerprint import canonical_intent, fingerprint
from leadpipe.models import SearchIntent


def test_request_id_is_ignored():
    a = SearchIntent(provider="mock", query="tattoo", city="Stockholm", request_id="one")
    b = SearchIntent(provider="mock", query="tattoo", city="Stockholm", request_id="two")

    assert fingerprint(a) == fingerprint(b)
    assert "requestId" not in canonical_intent(a)


def test_key_order_does_not_matter():
    a = SearchIntent.from_payload({"provider": "mock", "query": "tattoo", "city": "Malmö", "limit": 5})
    b = SearchIntent.from_payload({"limit": 5, "city": "Malmö", "query": "tattoo", "provider": "mock"})

    assert fingerprint(a) == fingerprint(b)


def test_result_affecting_fields_change_the_fingerprint():
    base = SearchIntent(provider="mock", query="tattoo")

    assert fingerprint(base) != fingerprint(SearchIntent(provider="mock", query="tattoo", page=2))
    assert fingerprint(base) != fingerprint(SearchIntent(provider="mock", query="tattoo", location="Lund"))
    assert fingerprint(base) != fingerprint(SearchIntent(provider="google_places", query="tattoo"))
    assert fingerprint(base) != fingerprint(SearchIntent(provider="mock", query="tattoo", social_presence="low"))


def test_any_presence_matches_absent_filter():
    explicit = SearchIntent.from_payload({"provider": "mock", "query": "tattoo", "socialPresence": "any"})
    absent = SearchIntent.from_payload({"provider": "mock", "query": "tattoo"})

    assert fingerprint(explicit) == fingerprint(absent)


def test_fingerprint_is_short_hex():
    value = fingerprint(SearchIntent(provider="mock", query="tattoo"))

    assert len(value) == 16
    int(value, 16)
