from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from seosync.core.errors import ProviderFetchError
from seosync.utils.logger import get_logger

log = get_logger(__name__)

SUCCESS_STATUS = 20000

TRAFFIC_SOURCE_CATEGORIES = ("Organic", "Direct", "Referral", "Paid", "Other")

_PAID_MARKERS = ("paid", "shopping", "ads", "hotel")
_REFERRAL_MARKERS = ("local", "map", "people_also_ask", "image", "video", "news", "top_stories")

# (bucket column, DataForSEO metrics.organic fields summed into it)
POSITION_BUCKETS = (
    ("top3", ("pos_1", "pos_2_3")),
    ("top10", ("pos_4_10",)),
    ("page2", ("pos_11_20",)),
    ("pos21_30", ("pos_21_30",)),
    ("pos31_50", ("pos_31_40", "pos_41_50")),
    ("pos51_plus", ("pos_51_60", "pos_61_70", "pos_71_80", "pos_81_90", "pos_91_100")),
)


def _number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return number


def _int(value: Any) -> int:
    return int(_number(value))


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """DataForSEO stamps look like '2023-01-04 12:30:00 +00:00'."""
    if not value or not isinstance(value, str):
        return None
    candidate = value.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%d %H:%M:%S%z", "%Y-%m-%d %H:%M:%S"):
        try:
            parsed = datetime.strptime(candidate, fmt)
            break
        except ValueError:
            continue
    else:
        try:
            parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    day_part = value.strip().split(" ")[0].split("T")[0]
    try:
        return date.fromisoformat(day_part)
    except ValueError:
        return None


def map_traffic_category(serp_type: Optional[str], intent: Optional[str]) -> str:
    """Bucket a ranked keyword into a dashboard traffic-source category."""
    serp_type = (serp_type or "").lower()
    intent = (intent or "").lower()

    if intent == "navigational":
        return "Direct"
    if intent in ("commercial", "transactional"):
        return "Paid"
    if any(marker in serp_type for marker in _PAID_MARKERS):
        return "Paid"
    if any(marker in serp_type for marker in _REFERRAL_MARKERS):
        return "Referral"
    if not serp_type or "organic" in serp_type:
        return "Organic"
    return "Other"


def _first_positive(*candidates: Any) -> Optional[float]:
    for candidate in candidates:
        if candidate is None:
            continue
        number = _number(candidate, default=-1.0)
        if number > 0:
            return number
    return None


class DataForSEOParser:
    """
    Normalises DataForSEO task envelopes into canonical row dicts.
    Raises ProviderFetchError when the envelope is not a successful task.
    """

    def __init__(self, payload: Dict[str, Any], endpoint: Optional[str] = None, **context):
        self.payload = payload
        self.endpoint = endpoint
        self.context = context
        self._result = self._extract_result()

    def _fail(self, message: str, status_code: Optional[int] = None) -> ProviderFetchError:
        details = {"endpoint": self.endpoint} if self.endpoint else None
        return ProviderFetchError(
            message, provider="dataforseo", status_code=status_code, details=details, **self.context
        )

    def _extract_result(self) -> Optional[Dict[str, Any]]:
        if not isinstance(self.payload, dict):
            raise self._fail("Malformed DataForSEO payload: expected an object")

        status = self.payload.get("status_code")
        if status is not None and _int(status) != SUCCESS_STATUS:
            raise self._fail(
                f"DataForSEO request failed: {status} {self.payload.get('status_message', '')}".strip(),
                status_code=_int(status),
            )

        tasks = self.payload.get("tasks")
        if not isinstance(tasks, list) or not tasks:
            raise self._fail("Malformed DataForSEO payload: no tasks")

        task = tasks[0] or {}
        task_status = task.get("status_code")
        if task_status is not None and _int(task_status) != SUCCESS_STATUS:
            raise self._fail(
                f"DataForSEO task failed: {task_status} {task.get('status_message', '')}".strip(),
                status_code=_int(task_status),
            )

        results = task.get("result")
        if not results:
            log.debug(f"DataForSEO task for {self.endpoint or 'unknown endpoint'} returned no result")
            return None
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise self._fail("Malformed DataForSEO payload: result is not a list of objects")
        return results[0]

    @property
    def result(self) -> Dict[str, Any]:
        return self._result or {}

    def items(self) -> List[Dict[str, Any]]:
        items = self.result.get("items")
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def parse_backlinks(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        now = datetime.now(timezone.utc)
        for item in self.items():
            source_url = item.get("url_from")
            target_url = item.get("url_to")
            if not source_url or not target_url:
                continue
            rows.append({
                "source_url": source_url,
                "target_url": target_url,
                "anchor_text": item.get("anchor"),
                "domain_rating": _number(item.get("domain_from_rank"), default=0.0) or None,
                "url_rating": _number(item.get("page_from_rank"), default=0.0) or None,
                "traffic": None,
                "is_follow": bool(item.get("dofollow", True)),
                "is_lost": bool(item.get("is_lost", False)),
                # provider marker: never None for provider rows
                "first_seen": _parse_timestamp(item.get("first_seen")) or now,
                "last_seen": _parse_timestamp(item.get("last_seen")),
            })
        return rows

    def parse_timeseries(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for item in self.items():
            day = _parse_day(item.get("date"))
            if day is None:
                continue
            rows.append({
                "date": day,
                "new_backlinks": _int(item.get("new_backlinks")),
                "lost_backlinks": _int(item.get("lost_backlinks")),
                "new_referring_domains": _int(item.get("new_referring_domains")),
                "lost_referring_domains": _int(item.get("lost_referring_domains")),
                "new_referring_main_domains": _int(item.get("new_referring_main_domains")),
                "lost_referring_main_domains": _int(item.get("lost_referring_main_domains")),
                "raw_data": item,
            })
        return rows

    def parse_relevant_pages(self) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for item in self.items():
            url = item.get("page_address")
            if not url:
                continue
            metrics = item.get("metrics") or {}
            organic = metrics.get("organic") or {}
            paid = metrics.get("paid") or {}
            rows.append({
                "url": url,
                "organic_pos1": _int(organic.get("pos_1")),
                "organic_pos2_3": _int(organic.get("pos_2_3")),
                "organic_pos4_10": _int(organic.get("pos_4_10")),
                "organic_count": _int(organic.get("count")),
                "organic_etv": _number(organic.get("etv")),
                "organic_is_new": _int(organic.get("is_new")),
                "organic_is_up": _int(organic.get("is_up")),
                "organic_is_down": _int(organic.get("is_down")),
                "organic_is_lost": _int(organic.get("is_lost")),
                "paid_count": _int(paid.get("count")),
                "paid_etv": _number(paid.get("etv")),
                "raw_data": item,
            })
        return rows

    def parse_traffic_sources(self) -> List[Dict[str, Any]]:
        """
        Aggregates a ranked-keyword sample into per-category traffic rows.

        Every row repeats the sample-level totals; categories with no
        estimated traffic are dropped.
        """
        items = self.items()
        totals = {category: 0.0 for category in TRAFFIC_SOURCE_CATEGORIES}
        total_etv = 0.0
        rank_sum = 0.0
        rank_count = 0

        for item in items:
            ranked = item.get("ranked_serp_element") or {}
            serp_item = ranked.get("serp_item") or {}
            keyword_data = item.get("keyword_data") or {}
            keyword_info = keyword_data.get("keyword_info") or {}
            intent = (keyword_data.get("search_intent_info") or {}).get("main_intent")

            weight = _first_positive(
                serp_item.get("etv"),
                ranked.get("etv"),
                keyword_info.get("etv"),
                keyword_info.get("search_volume"),
            ) or 0.0

            rank = _first_positive(
                serp_item.get("rank_group"),
                serp_item.get("rank_absolute"),
                serp_item.get("position"),
                ranked.get("rank_group"),
                ranked.get("rank_absolute"),
                ranked.get("position"),
            )
            if rank is not None:
                rank_sum += rank
                rank_count += 1

            total_etv += weight
            totals[map_traffic_category(serp_item.get("type"), intent)] += weight

        average_rank = round(rank_sum / rank_count, 2) if rank_count else None
        summary = {
            "total_keywords": len(items),
            "total_estimated_traffic": round(total_etv, 2),
            "organic_estimated_traffic": round(totals["Organic"], 2),
            "average_rank": average_rank,
            "rank_sample_size": rank_count,
        }

        rows = []
        for category in TRAFFIC_SOURCE_CATEGORIES:
            value = round(totals[category], 2)
            if value > 0:
                rows.append({"name": category, "value": value, **summary})
        return rows

    def parse_ranked_keywords_summary(self, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """Monthly snapshot: total ranked keywords plus position buckets."""
        as_of = as_of or datetime.now(timezone.utc)
        result = self.result
        organic = ((result.get("metrics") or {}).get("organic")) or {}

        row: Dict[str, Any] = {
            "month": as_of.month,
            "year": as_of.year,
            "total_keywords": _int(result.get("total_count")),
        }

        if organic:
            for column, fields in POSITION_BUCKETS:
                row[column] = sum(_int(organic.get(field)) for field in fields)
            return row

        # no aggregate metrics: bucket the sampled items by rank
        counts = {column: 0 for column, _ in POSITION_BUCKETS}
        for item in self.items():
            serp_item = ((item.get("ranked_serp_element") or {}).get("serp_item")) or {}
            rank = _first_positive(serp_item.get("rank_group"), serp_item.get("rank_absolute"))
            if rank is None:
                continue
            if rank <= 3:
                counts["top3"] += 1
            elif rank <= 10:
                counts["top10"] += 1
            elif rank <= 20:
                counts["page2"] += 1
            elif rank <= 30:
                counts["pos21_30"] += 1
            elif rank <= 50:
                counts["pos31_50"] += 1
            else:
                counts["pos51_plus"] += 1
        row.update(counts)
        return row
