from datetime import date, datetime, timezone

import pytest

from seosync.core.errors import ProviderFetchError
from seosync.sources.dataforseo_parser import DataForSEOParser, map_traffic_category


def _ranked(etv, rank, serp_type="organic", intent="informational", volume=1000):
    return {
        "keyword_data": {"keyword_info": {"search_volume": volume}, "search_intent_info": {"main_intent": intent}},
        "ranked_serp_element": {"serp_item": {"type": serp_type, "etv": etv, "rank_group": rank}},
    }


@pytest.mark.parametrize(
    "serp_type,intent,expected",
    [
        ("organic", "informational", "Organic"),
        (None, None, "Organic"),
        ("organic", "navigational", "Direct"),
        ("organic", "transactional", "Paid"),
        ("paid", None, "Paid"),
        ("local_pack", None, "Referral"),
        ("featured_snippet", None, "Other"),
    ],
)
def test_map_traffic_category(serp_type, intent, expected):
    assert map_traffic_category(serp_type, intent) == expected


def test_failed_task_status_raises(envelope):
    payload = envelope(task_status=40501)
    with pytest.raises(ProviderFetchError) as excinfo:
        DataForSEOParser(payload, endpoint="/v3/test", tenant_id="acme")
    assert excinfo.value.status_code == 40501
    assert excinfo.value.tenant_id == "acme"
    assert excinfo.value.details["endpoint"] == "/v3/test"


def test_failed_envelope_status_raises():
    with pytest.raises(ProviderFetchError) as excinfo:
        DataForSEOParser({"status_code": 40100, "status_message": "Not authorized."})
    assert excinfo.value.status_code == 40100


def test_missing_tasks_is_malformed():
    with pytest.raises(ProviderFetchError):
        DataForSEOParser({"status_code": 20000, "tasks": []})


def test_empty_result_yields_no_rows():
    payload = {"status_code": 20000, "tasks": [{"status_code": 20000, "result": None}]}
    parser = DataForSEOParser(payload)
    assert parser.items() == []
    assert parser.parse_relevant_pages() == []
    assert parser.parse_traffic_sources() == []


def test_parse_backlinks(envelope):
    parser = DataForSEOParser(envelope([
        {
            "url_from": "https://blog.example/post",
            "url_to": "https://acme.com/",
            "anchor": "acme",
            "domain_from_rank": 55,
            "dofollow": False,
            "first_seen": "2024-01-04 12:30:00 +00:00",
            "last_seen": "2024-05-01 00:00:00 +00:00",
        },
        {"url_from": "https://missing-target.example/"},
        {"url_from": "https://no-dates.example/", "url_to": "https://acme.com/about"},
    ]))

    rows = parser.parse_backlinks()

    assert len(rows) == 2
    assert rows[0]["first_seen"] == datetime(2024, 1, 4, 12, 30, tzinfo=timezone.utc)
    assert rows[0]["domain_rating"] == 55
    assert rows[0]["url_rating"] is None
    assert rows[0]["is_follow"] is False
    # provider rows always carry first_seen
    assert rows[1]["first_seen"] is not None
    assert rows[1]["last_seen"] is None


def test_parse_timeseries(envelope):
    parser = DataForSEOParser(envelope([
        {"date": "2024-05-01 00:00:00 +00:00", "new_backlinks": 4, "lost_referring_domains": "2"},
        {"date": "not a date"},
    ]))

    rows = parser.parse_timeseries()

    assert len(rows) == 1
    assert rows[0]["date"] == date(2024, 5, 1)
    assert rows[0]["new_backlinks"] == 4
    assert rows[0]["lost_referring_domains"] == 2
    assert rows[0]["lost_backlinks"] == 0


def test_parse_relevant_pages(envelope):
    parser = DataForSEOParser(envelope([
        {"page_address": "https://acme.com/", "metrics": {"organic": {"pos_1": 3, "etv": "12.5", "is_new": 1}}},
        {"metrics": {}},
    ]))

    rows = parser.parse_relevant_pages()

    assert [row["url"] for row in rows] == ["https://acme.com/"]
    assert rows[0]["organic_pos1"] == 3
    assert rows[0]["organic_etv"] == 12.5
    assert rows[0]["organic_is_new"] == 1
    assert rows[0]["paid_count"] == 0


def test_parse_traffic_sources(envelope):
    parser = DataForSEOParser(envelope([
        _ranked(10.25, 1),
        _ranked(20, 5),
        _ranked(5, 12, intent="navigational"),
        _ranked(0, None, serp_type="paid", volume=0),
    ]))

    rows = {row["name"]: row for row in parser.parse_traffic_sources()}

    assert set(rows) == {"Organic", "Direct"}
    assert rows["Organic"]["value"] == 30.25
    assert rows["Direct"]["value"] == 5.0
    assert rows["Organic"]["total_estimated_traffic"] == 35.25
    assert rows["Organic"]["total_keywords"] == 4
    assert rows["Organic"]["average_rank"] == 6.0
    assert rows["Organic"]["rank_sample_size"] == 3


def test_parse_ranked_keywords_summary_from_metrics(envelope):
    organic = {
        "pos_1": 2, "pos_2_3": 3, "pos_4_10": 7, "pos_11_20": 9, "pos_21_30": 4,
        "pos_31_40": 1, "pos_41_50": 2, "pos_51_60": 1, "pos_91_100": 5,
    }
    parser = DataForSEOParser(envelope([], total_count=412, metrics={"organic": organic}))

    row = parser.parse_ranked_keywords_summary(as_of=datetime(2024, 3, 15, tzinfo=timezone.utc))

    assert row == {
        "month": 3,
        "year": 2024,
        "total_keywords": 412,
        "top3": 5,
        "top10": 7,
        "page2": 9,
        "pos21_30": 4,
        "pos31_50": 3,
        "pos51_plus": 6,
    }


def test_parse_ranked_keywords_summary_buckets_sample(envelope):
    parser = DataForSEOParser(envelope(
        [_ranked(1, 1), _ranked(1, 8), _ranked(1, 15), _ranked(1, 45), _ranked(1, 77)],
        total_count=5,
    ))

    row = parser.parse_ranked_keywords_summary(as_of=datetime(2024, 3, 15, tzinfo=timezone.utc))

    assert (row["top3"], row["top10"], row["page2"], row["pos21_30"], row["pos31_50"], row["pos51_plus"]) == (
        1, 1, 1, 0, 1, 1,
    )
