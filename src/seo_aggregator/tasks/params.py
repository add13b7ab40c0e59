"""Request parameter schemas, one per provider endpoint family."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskParams(BaseModel):
    """Provider parameters; unknown options pass through to the provider."""

    model_config = ConfigDict(extra="allow")

    tag: str | None = None

    def to_provider(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def _non_blank(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must be a non-empty string")
    return stripped


class LocatedParams(TaskParams):
    location_name: str | None = None
    location_code: int | str | None = None
    language_name: str | None = None
    language_code: str | None = None


class TargetParams(LocatedParams):
    target: str

    @field_validator("target")
    @classmethod
    def _target_not_blank(cls, value: str) -> str:
        return _non_blank(value)


class KeywordListParams(LocatedParams):
    keywords: list[str] = Field(min_length=1)

    @field_validator("keywords")
    @classmethod
    def _keywords_not_blank(cls, value: list[str]) -> list[str]:
        return [_non_blank(item) for item in value]


class OnPageParams(TaskParams):
    target: str
    max_crawl_pages: int = Field(ge=1)
    start_url: str | None = None
    max_crawl_depth: int | None = Field(default=None, ge=0)
    enable_javascript: bool | None = None
    browser_preset: Literal["desktop", "mobile", "tablet"] | None = None

    @field_validator("target")
    @classmethod
    def _target_not_blank(cls, value: str) -> str:
        return _non_blank(value)


class SerpParams(LocatedParams):
    keyword: str
    depth: int | None = Field(default=None, ge=1, le=700)
    device: Literal["desktop", "mobile"] | None = None
    se_domain: str | None = None
    priority: int | None = Field(default=None, ge=1, le=2)

    @field_validator("keyword")
    @classmethod
    def _keyword_not_blank(cls, value: str) -> str:
        return _non_blank(value)


class KeywordsForKeywordsParams(KeywordListParams):
    target: str | None = None
    search_partners: bool | None = None
    date_from: str | None = None
    date_to: str | None = None
    include_adult_keywords: bool | None = None


class SearchVolumeParams(KeywordListParams):
    search_partners: bool | None = None
    date_from: str | None = None
    date_to: str | None = None


class KeywordsForSiteParams(TargetParams):
    target_type: Literal["site", "page"] | None = None
    search_partners: bool | None = None


class DomainCompetitorsParams(TargetParams):
    limit: int | None = Field(default=None, ge=1, le=1000)
    offset: int | None = Field(default=None, ge=0)
    exclude_top_domains: bool | None = None


class DomainRankOverviewParams(TargetParams):
    ignore_synonyms: bool | None = None
    limit: int | None = Field(default=None, ge=1, le=1000)
    offset: int | None = Field(default=None, ge=0)


class ContentAnalysisParams(TaskParams):
    keyword: str
    internal_list_limit: int | None = Field(default=None, ge=1, le=20)
    rank_scale: Literal["one_hundred", "one_thousand"] | None = None

    @field_validator("keyword")
    @classmethod
    def _keyword_not_blank(cls, value: str) -> str:
        return _non_blank(value)


class RelatedKeywordsParams(LocatedParams):
    keyword: str
    depth: int | None = Field(default=None, ge=0, le=4)
    include_seed_keyword: bool | None = None
    include_serp_info: bool | None = None
    ignore_synonyms: bool | None = None
    limit: int | None = Field(default=None, ge=1, le=1000)
    offset: int | None = Field(default=None, ge=0)

    @field_validator("keyword")
    @classmethod
    def _keyword_not_blank(cls, value: str) -> str:
        return _non_blank(value)
