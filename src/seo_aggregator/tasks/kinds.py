"""Registry of provider task kinds exposed under `/api/{kind}`."""

from __future__ import annotations

from dataclasses import dataclass

from seo_aggregator.tasks.params import (
    ContentAnalysisParams,
    DomainCompetitorsParams,
    DomainRankOverviewParams,
    KeywordsForKeywordsParams,
    KeywordsForSiteParams,
    OnPageParams,
    RelatedKeywordsParams,
    SearchVolumeParams,
    SerpParams,
    TaskParams,
)

# Daily request limits per provider API family.
DEFAULT_DAILY_QUOTAS: dict[str, int] = {
    "KEYWORDS_DATA": 10000,
    "DATAFORSEO_LABS": 5000,
    "SERP": 5000,
    "DOMAIN_ANALYTICS": 1000,
    "ON_PAGE": 500,
    "CONTENT_ANALYSIS": 1000,
}


@dataclass(frozen=True)
class TaskKind:
    name: str
    table: str
    endpoint: str
    params_model: type[TaskParams]
    group_fields: tuple[str, ...]
    task_type: str
    quota_family: str
    supports_queue: bool = False
    supports_live: bool = False
    task_get_suffix: str = "task_get"
    live_suffix: str = "live"
    # Set when several kinds share one table; matched against the stored provider path.
    path_marker: str | None = None

    def owns(self, path: list[str]) -> bool:
        return self.path_marker is None or self.path_marker in path

    def request_path(self, action: str) -> list[str]:
        return ["v3", *self.endpoint.split("/"), *action.split("/")]


def build_kinds() -> dict[str, TaskKind]:
    kinds = [
        TaskKind(
            name="onpage",
            table="onpage_tasks",
            endpoint="on_page",
            params_model=OnPageParams,
            group_fields=("target", "max_crawl_pages"),
            task_type="onpage",
            quota_family="ON_PAGE",
            supports_queue=True,
        ),
        TaskKind(
            name="serp",
            table="serp_tasks",
            endpoint="serp/google/organic",
            params_model=SerpParams,
            group_fields=("keyword", "location_code", "language_code", "depth"),
            task_type="serp",
            quota_family="SERP",
            supports_queue=True,
            supports_live=True,
            task_get_suffix="task_get/advanced",
            live_suffix="live/advanced",
        ),
        TaskKind(
            name="keywords-for-keywords",
            table="keywords_for_keywords_tasks",
            endpoint="keywords_data/google_ads/keywords_for_keywords",
            params_model=KeywordsForKeywordsParams,
            group_fields=("keywords", "location_code", "language_code"),
            task_type="keywords_for_keywords",
            quota_family="KEYWORDS_DATA",
            supports_queue=True,
            supports_live=True,
            path_marker="keywords_for_keywords",
        ),
        TaskKind(
            name="search-volume",
            table="keywords_for_keywords_tasks",
            endpoint="keywords_data/google_ads/search_volume",
            params_model=SearchVolumeParams,
            group_fields=("keywords", "location_code", "language_code"),
            task_type="search_volume",
            quota_family="KEYWORDS_DATA",
            supports_live=True,
            path_marker="search_volume",
        ),
        TaskKind(
            name="keywords-for-site",
            table="keywords_for_site_tasks",
            endpoint="keywords_data/google_ads/keywords_for_site",
            params_model=KeywordsForSiteParams,
            group_fields=("target", "location_code", "language_code"),
            task_type="keywords_for_site",
            quota_family="KEYWORDS_DATA",
            supports_live=True,
        ),
        TaskKind(
            name="domain-competitors",
            table="domain_competitors_tasks",
            endpoint="dataforseo_labs/google/competitors_domain",
            params_model=DomainCompetitorsParams,
            group_fields=("target", "location_code", "language_code"),
            task_type="domain_competitors",
            quota_family="DOMAIN_ANALYTICS",
            supports_live=True,
        ),
        TaskKind(
            name="domain-rank-overview",
            table="domain_rank_overview_tasks",
            endpoint="dataforseo_labs/google/domain_rank_overview",
            params_model=DomainRankOverviewParams,
            group_fields=("target", "location_code", "language_code"),
            task_type="domain_analytics",
            quota_family="DATAFORSEO_LABS",
            supports_live=True,
        ),
        TaskKind(
            name="related-keywords",
            table="related_keywords_tasks",
            endpoint="dataforseo_labs/google/related_keywords",
            params_model=RelatedKeywordsParams,
            group_fields=("keyword", "location_code", "language_code", "depth"),
            task_type="related_keywords",
            quota_family="DATAFORSEO_LABS",
            supports_live=True,
        ),
        TaskKind(
            name="content-analysis",
            table="content_analysis_summary_tasks",
            endpoint="content_analysis/summary",
            params_model=ContentAnalysisParams,
            group_fields=("keyword",),
            task_type="content_analysis",
            quota_family="CONTENT_ANALYSIS",
            supports_live=True,
        ),
    ]
    return {kind.name: kind for kind in kinds}


KINDS: dict[str, TaskKind] = build_kinds()
