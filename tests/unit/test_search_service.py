"""QueryEngine: candidate retrieval, filters, ranking."""

from prometheus_client import REGISTRY
import pytest

from book_search_server.domain.errors import InvalidQueryError
from book_search_server.domain.model import BookMetadata, SearchFilters
from book_search_server.service_layer.indexing_service import IndexBuilder
from book_search_server.service_layer.search_service import QueryEngine


@pytest.fixture
def indexed_backend(backend, book_source):
    book_source.add(900, "Title: Through the Looking-Glass\nAuthor: Lewis Carroll\n", "a wonderland of mirrors")
    book_source.add(901, "Title: Sylvie and Bruno\nAuthor: Lewis Carroll\n", "alice is not here at all")
    IndexBuilder(backend, book_source).rebuild_index()
    return backend


def _ids(response):
    return [result.book_id for result in response.results]


class TestQueryValidation:
    @pytest.mark.parametrize("query", ["", "   ", "\n\t"])
    def test_empty_query_is_invalid(self, kv_backend, query):
        with pytest.raises(InvalidQueryError):
            QueryEngine(kv_backend).search(query)

    def test_negative_limit_is_invalid(self, kv_backend):
        with pytest.raises(InvalidQueryError):
            QueryEngine(kv_backend).search("pride", limit=-1)

    def test_query_without_tokens_returns_empty_response(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("  a an 42  ")

        assert response.query == "a an 42"
        assert response.count == 0
        assert response.results == []


class TestSearch:
    def test_pride_and_prejudice(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("pride")

        result = next(result for result in response.results if result.book_id == 1342)
        assert result.score >= 1
        assert "pride" in result.matches
        assert result.title == "Pride and Prejudice"
        assert result.author == "Jane Austen"

    def test_unmatched_token_returns_zero_results(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("xyzneverexistingword")

        assert response.count == 0
        assert response.results == []

    def test_or_semantics(self, indexed_backend):
        engine = QueryEngine(indexed_backend)

        alice = set(_ids(engine.search("alice")))
        wonderland = set(_ids(engine.search("wonderland")))
        both = set(_ids(engine.search("alice wonderland")))

        assert both == alice | wonderland
        assert both == {11, 900, 901}
        assert both != alice & wonderland

    def test_and_filters(self, indexed_backend):
        engine = QueryEngine(indexed_backend)
        filters = SearchFilters(author="carroll", language="EN", year=2008)

        response = engine.search("alice wonderland", filters)

        assert _ids(response) == [11]
        assert response.filters == {"author": "carroll", "language": "EN", "year": "2008"}

    def test_filters_can_exclude_everything(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("pride", SearchFilters(language="fr"))
        assert response.count == 0

    def test_language_filter(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("bovary", SearchFilters(language="fr"))
        assert _ids(response) == [2413]

    def test_score_counts_title_and_author_matches(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("pride austen")

        top = response.results[0]
        assert top.book_id == 1342
        assert top.score == 2
        assert top.matches == ["austen", "pride"]

    def test_body_only_matches_score_zero(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("rabbit")

        assert _ids(response) == [11]
        assert response.results[0].score == 0
        assert response.results[0].matches == []

    def test_query_is_trimmed_in_response(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("  Pride  ")
        assert response.query == "Pride"
        assert 1342 in _ids(response)

    def test_count_matches_results(self, indexed_backend):
        response = QueryEngine(indexed_backend).search("the")
        assert response.count == len(response.results)


class TestRanking:
    @pytest.fixture
    def ranked_backend(self, backend):
        for book_id, title in ((30, "Whale Tales"), (10, "Whale Song"), (20, "Ocean"), (5, "Whale")):
            backend.store_book_metadata(BookMetadata(book_id=book_id, title=title))
        backend.add_words_to_index({"whale"}, 30)
        backend.add_words_to_index({"whale"}, 10)
        backend.add_words_to_index({"whale"}, 20)
        backend.add_words_to_index({"whale"}, 5)
        backend.add_words_to_index({"tales"}, 30)
        return backend

    def test_sorted_by_score_then_book_id(self, ranked_backend):
        response = QueryEngine(ranked_backend).search("whale tales")

        assert _ids(response) == [30, 5, 10, 20]
        assert [result.score for result in response.results] == [2, 1, 1, 0]

    def test_limit_truncates_after_sorting(self, ranked_backend):
        response = QueryEngine(ranked_backend).search("whale tales", limit=2)

        assert _ids(response) == [30, 5]
        assert response.count == 2

    def test_limit_zero(self, ranked_backend):
        assert QueryEngine(ranked_backend).search("whale", limit=0).count == 0

    def test_candidates_without_metadata_are_skipped(self, ranked_backend):
        ranked_backend.add_word_to_index("whale", 999)

        response = QueryEngine(ranked_backend).search("whale")

        assert 999 not in _ids(response)
        assert response.count == 4

    def test_observes_search_metrics(self, ranked_backend):
        before = REGISTRY.get_sample_value("search_latency_seconds_count") or 0.0

        QueryEngine(ranked_backend).search("whale")

        assert REGISTRY.get_sample_value("search_latency_seconds_count") == before + 1
