"""
Pydantic models shared by the discovery and extraction stages
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any, Literal, Union


DEFAULT_PATTERNS = ["/blog", "/posts"]


# ============================================================================
# DISCOVERY
# ============================================================================

class SiteTarget(BaseModel):
    """One discovery unit: a site root plus the path patterns to look for"""
    root_url: str = Field(..., description="Site root (homepage) URL")
    patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_PATTERNS))
    root_only: bool = Field(True, description="Exact path match (modulo trailing slash) instead of substring")

    class Config:
        frozen = True


class SitemapDocument(BaseModel):
    """A fetched sitemap body and the deduplicated <loc> values found in it"""
    url: str
    raw_text: str
    locations: List[str] = Field(default_factory=list)
    is_index: bool = False

    class Config:
        frozen = True


class SocialLinks(BaseModel):
    x: List[str] = Field(default_factory=list)
    linkedin: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class HomepageScan(BaseModel):
    """Result of one homepage page load"""
    loaded: bool = False
    links: List[str] = Field(default_factory=list)
    matches: List[str] = Field(default_factory=list)
    socials: SocialLinks = Field(default_factory=SocialLinks)

    class Config:
        frozen = True


class DiscoveryResult(BaseModel):
    target: SiteTarget
    sitemap_matches: List[str] = Field(default_factory=list)
    homepage_matches: List[str] = Field(default_factory=list)
    socials: SocialLinks = Field(default_factory=SocialLinks)
    error: Optional[str] = None

    class Config:
        frozen = True

    @property
    def matches(self) -> List[str]:
        """Sitemap matches win; homepage matches are the fallback."""
        return list(self.sitemap_matches) if self.sitemap_matches else list(self.homepage_matches)

    def to_record(self) -> Dict[str, Any]:
        """Shape written to the discovery JSON artifact."""
        record: Dict[str, Any] = {
            "url": self.target.root_url,
            "patterns": list(self.target.patterns),
        }
        if self.error is not None:
            record["error"] = self.error
            return record
        record["matches"] = self.matches
        record["socials"] = {"x": list(self.socials.x), "linkedin": list(self.socials.linkedin)}
        return record


# ============================================================================
# STRUCTURED EXTRACTION
# ============================================================================

class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    class Config:
        frozen = True


ErrorKind = Literal["parse_failed", "validation_failed", "request_failed"]


class ExtractionSuccess(BaseModel):
    ok: Literal[True] = True
    data: Any = None
    raw_text: str = ""
    usage: Optional[TokenUsage] = None
    attempts: int = 1

    class Config:
        frozen = True


class ExtractionFailure(BaseModel):
    ok: Literal[False] = False
    error_kind: ErrorKind
    message: str = ""
    raw_text: Optional[str] = None
    usage: Optional[TokenUsage] = None
    last_issues: List[Dict[str, Any]] = Field(default_factory=list)
    attempts: int = 0

    class Config:
        frozen = True


ExtractionOutcome = Union[ExtractionSuccess, ExtractionFailure]


# ============================================================================
# DOWNSTREAM SCHEMAS
# ============================================================================

class PostEntry(BaseModel):
    """One post link pulled from a blog listing page"""
    title: str
    url: str
    date: Optional[str] = None


class PostRanking(BaseModel):
    score: int = Field(..., ge=1, le=10)
    summary: str


class Mentions(BaseModel):
    """Company and fund names found in one article; either list may be omitted"""
    companies: Optional[List[str]] = None
    funds: Optional[List[str]] = None
