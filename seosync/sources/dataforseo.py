from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from seosync.core.errors import ProviderFetchError
from seosync.core.fetcher import Fetcher
from seosync.core.settings import ProviderSettings
from seosync.sources.dataforseo_parser import DataForSEOParser
from seosync.utils.logger import get_logger

log = get_logger(__name__)


class DataForSEOClient:
    """
    Billable DataForSEO calls, each returning normalised rows.
    """

    BACKLINKS = "/v3/backlinks/backlinks/live"
    BACKLINK_TIMESERIES = "/v3/backlinks/timeseries_new_lost_summary/live"
    RELEVANT_PAGES = "/v3/dataforseo_labs/google/relevant_pages/live"
    RANKED_KEYWORDS = "/v3/dataforseo_labs/google/ranked_keywords/live"

    def __init__(self, fetcher: Fetcher, settings: Optional[ProviderSettings] = None):
        self.fetcher = fetcher
        self.settings = settings or ProviderSettings()

    async def _post(self, endpoint: str, task: Dict[str, Any], **context) -> DataForSEOParser:
        if not self.fetcher.credentials_b64:
            raise ProviderFetchError(
                "DataForSEO credentials not configured. Set DATAFORSEO_BASE64.",
                provider="dataforseo",
                **context,
            )
        log.debug(f"POST {endpoint} target={task.get('target')}")
        payload = await self.fetcher.post_json(endpoint, [task], **context)
        return DataForSEOParser(payload, endpoint=endpoint, **context)

    def _labs_task(self, target: str, limit: int) -> Dict[str, Any]:
        return {
            "target": target,
            "location_code": self.settings.location_code,
            "language_name": self.settings.language_name,
            "limit": limit,
        }

    async def fetch_backlinks(self, target: str, **context) -> List[Dict[str, Any]]:
        task = {
            "target": target,
            "mode": "as_is",
            "limit": self.settings.backlinks_limit,
        }
        parser = await self._post(self.BACKLINKS, task, **context)
        return parser.parse_backlinks()

    async def fetch_backlink_timeseries(
        self, target: str, days: Optional[int] = None, *, now: Optional[datetime] = None, **context
    ) -> List[Dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        days = days or self.settings.timeseries_days
        task = {
            "target": target,
            "date_from": (now - timedelta(days=days)).date().isoformat(),
            "date_to": now.date().isoformat(),
            "group_range": "day",
        }
        parser = await self._post(self.BACKLINK_TIMESERIES, task, **context)
        return parser.parse_timeseries()

    async def fetch_top_pages(self, target: str, **context) -> List[Dict[str, Any]]:
        task = self._labs_task(target, self.settings.top_pages_limit)
        parser = await self._post(self.RELEVANT_PAGES, task, **context)
        return parser.parse_relevant_pages()

    async def fetch_traffic_sources(self, target: str, **context) -> List[Dict[str, Any]]:
        task = self._labs_task(target, self.settings.traffic_sample_limit)
        parser = await self._post(self.RANKED_KEYWORDS, task, **context)
        return parser.parse_traffic_sources()

    async def fetch_ranked_keywords_summary(
        self, target: str, *, now: Optional[datetime] = None, **context
    ) -> Dict[str, Any]:
        task = {
            "target": target,
            "location_code": self.settings.location_code,
            "language_code": self.settings.language_code,
            "limit": self.settings.ranked_keywords_limit,
        }
        parser = await self._post(self.RANKED_KEYWORDS, task, **context)
        return parser.parse_ranked_keywords_summary(as_of=now)
