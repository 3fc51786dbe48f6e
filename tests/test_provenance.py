from services.llm_generate.app.prompts import FOUND_IN_INTERNET
from services.query.app.provenance import ProvenanceAggregator
from shared.models import RetrievedItem


def _item(link: str, relevance: float, cid: str = "c") -> RetrievedItem:
    return RetrievedItem(
        content_id=cid, content="text", source_link=link, relevance=relevance
    )


def test_duplicate_links_keep_maximum_relevance() -> None:
    items = [_item("https://a", 0.3), _item("https://a", 0.7), _item("https://a", 0.5)]
    links = ProvenanceAggregator().links(items, "An answer.")
    assert len(links) == 1
    assert links[0].link == "https://a"
    assert links[0].distance == 0.7


def test_links_sorted_by_relevance_descending_and_blank_dropped() -> None:
    items = [
        _item("https://a", 0.1),
        _item("", 0.9),
        _item("   ", 0.8),
        _item("https://b", 0.3),
        _item("https://c", 0.2),
    ]
    links = ProvenanceAggregator().links(items, "An answer.")
    assert [link.link for link in links] == ["https://b", "https://c", "https://a"]


def test_ties_keep_first_seen_order() -> None:
    items = [_item("https://x", 0.2), _item("https://y", 0.2)]
    links = ProvenanceAggregator().links(items, "An answer.")
    assert [link.link for link in links] == ["https://x", "https://y"]


def test_negative_answer_suppresses_links() -> None:
    items = [_item("https://a", 0.1)]
    assert ProvenanceAggregator().links(items, "I don't know the answer.") == []


def test_self_sourced_answer_suppresses_links() -> None:
    items = [_item("https://a", 0.1)]
    answer = f"Canberra is the capital. {FOUND_IN_INTERNET}"
    assert ProvenanceAggregator().links(items, answer) == []


def test_injected_classifiers_are_used() -> None:
    aggregator = ProvenanceAggregator(
        is_negative=lambda t: False, is_self_sourced=lambda t: t.endswith("!")
    )
    items = [_item("https://a", 0.1)]
    assert aggregator.links(items, "I don't know") != []
    assert aggregator.links(items, "Sure!") == []


def test_source_links_serialize_with_distance() -> None:
    links = ProvenanceAggregator().links([_item("https://a", 0.25)], "ok")
    assert links[0].model_dump(by_alias=True) == {"link": "https://a", "distance": 0.25}
