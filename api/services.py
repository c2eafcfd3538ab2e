"""
Service layer wrapping pipeline functions
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

import settings
from find_blog_posts import discovery_records, run_discovery
from site_config import parse_sites


class DiscoveryService:
    """Service for blog discovery"""

    def __init__(self, runner: Callable = run_discovery):
        self.runner = runner

    def _discover(
        self,
        urls: List[str],
        patterns: Optional[List[str]],
        root_only: bool,
        homepage_scan: str,
    ) -> Dict[str, Any]:
        items = [{"url": u, "rootOnly": root_only} for u in urls]
        # Raises SiteConfigError for unusable URLs or patterns
        targets = parse_sites({"sites": items, "patterns": patterns} if patterns else items)
        print(f"[api] Discovery over {len(targets)} site(s) (homepage_scan={homepage_scan})")
        results = self.runner(targets, policy=homepage_scan)
        records = discovery_records(results)
        return {
            "sites": records,
            "total_sites": len(records),
            "sites_with_matches": sum(1 for r in records if r.get("matches")),
            "sites_failed": sum(1 for r in records if r.get("error")),
        }

    async def discover(
        self,
        urls: List[str],
        patterns: Optional[List[str]] = None,
        root_only: bool = True,
        homepage_scan: str = settings.HOMEPAGE_SCAN,
    ) -> Dict[str, Any]:
        """
        Run discovery for the given URLs.

        The pipeline is synchronous (Playwright sync API), so it runs in the
        default thread pool to keep the event loop free.
        """
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._discover, urls, patterns, root_only, homepage_scan)
