from leadpipe.providers.mock import MockAdapter, fnv1a_32
from leadpipe.providers.validate import assert_provider_result
from leadpipe.models import SearchIntent


def test_fnv1a_known_values():
    assert fnv1a_32("") == 0x811C9DC5
    assert fnv1a_32("a") == 0xE40C292C


def test_mock_is_deterministic():
    intent = SearchIntent(provider="mock", query="tattoo", location="Stockholm", limit=5)

    first = MockAdapter().search(intent)
    second = MockAdapter().search(intent)

    assert [r.company for r in first.records] == [r.company for r in second.records]
    assert len(first.records) == 5
    assert first.meta.exhausted is True
    assert first.meta.next_cursor is None


def test_mock_caps_results_and_passes_validation():
    result = MockAdapter().search(SearchIntent(provider="mock", query="tattoo", limit=50))

    assert len(result.records) == 10
    assert result.meta.returned_count == 10
    assert assert_provider_result("mock", result) is result


def test_source_ids_depend_on_query_and_index_only():
    base = MockAdapter().search(SearchIntent(provider="mock", query="tattoo", limit=3))
    elsewhere = MockAdapter().search(SearchIntent(provider="mock", query="tattoo", location="Malmö", limit=3))

    assert [r.source_id for r in base.records] == [r.source_id for r in elsewhere.records]
    assert all(r.source_id.startswith("mock_") for r in base.records)


def test_presence_shapes_listings():
    low = MockAdapter().search(SearchIntent(provider="mock", query="tattoo", social_presence="low", limit=10))
    high = MockAdapter().search(SearchIntent(provider="mock", query="tattoo", social_presence="high", limit=10))

    assert all(0 <= r.company.review_count <= 140 for r in low.records)
    assert all(30 <= r.company.review_count <= 340 for r in high.records)
    assert all(3.5 <= r.company.rating <= 4.9 for r in low.records + high.records)


def test_categories_lead_with_the_query():
    result = MockAdapter().search(SearchIntent(provider="mock", query="  Tattoo ", limit=10))

    for record in result.records:
        assert "mock-category" in record.company.categories
        assert record.company.categories[0] in ("tattoo", "mock-category")
