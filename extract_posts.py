"""
Post extraction
===============

Visit every blog listing page found by discovery, strip the site chrome
(header, footer, navigation, scripts) and ask the model for up to five post
entries: {title, url, date}.

One JSON file is written per listing page:
    outputs/extracted-posts/posts_<slug>.json
    {"source": <page url>, "extracted": [...], "usage": {...}, "error": <only on failure>}
"""
import os
import re
import json
import time
from urllib.parse import urljoin
from typing import Any, Callable, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError

import settings
from models import ExtractionOutcome, PostEntry, TokenUsage
from homepage_scanner import browser_session, new_page
from structured_llm import StructuredExtractionClient, add_usage, create_llm_service, LLMConfigurationError


MAX_HTML_CHARS = 200000
MAX_POSTS = 5

CHROME_SELECTORS = [
    "header",
    "footer",
    "nav",
    '[role="banner"]',
    '[role="contentinfo"]',
    ".site-header",
    ".site-footer",
    ".header",
    ".footer",
    ".masthead",
    "script",
    "style",
    "noscript",
]

CLEAN_HTML_JS = """selectors => {
    for (const s of selectors) {
        document.querySelectorAll(s).forEach(el => el.remove());
    }
    return document.documentElement.innerHTML;
}"""

PROMPT_TEMPLATE = (
    "You are given the cleaned HTML for a blog listing page at {url}. "
    "Extract up to {limit} blog post entries. For each entry return an object with keys: "
    "title (string), url (absolute URL), date (ISO date string if present, otherwise null). "
    "Return ONLY a JSON array (no surrounding text). If you cannot find dates, use null. "
    "Ensure URLs are absolute when possible."
)


def output_filename(blog_url: str) -> str:
    """posts_<slug>.json where the slug is the URL without scheme, non-alphanumerics as '_'."""
    base = re.sub(r"^https?://", "", blog_url or "", flags=re.IGNORECASE)
    base = re.sub(r"[^a-zA-Z0-9]", "_", base).rstrip("_")
    return f"posts_{base or 'page'}.json"


def build_prompt(page_url: str, cleaned_html: str) -> str:
    html = cleaned_html[:MAX_HTML_CHARS]
    return PROMPT_TEMPLATE.format(url=page_url, limit=MAX_POSTS) + f"\n\nHTML:\n{html}"


def fetch_clean_html(browser, url: str, timeout_ms: int = settings.PAGE_TIMEOUT_MS) -> Optional[str]:
    page = new_page(browser)
    try:
        try:
            resp = page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightError as e:
            print(f"[extract] Navigation failed for {url}: {type(e).__name__}")
            return None
        if resp is not None and resp.status >= 400:
            print(f"[extract] Skip (status={resp.status}): {url}")
            return None
        try:
            return page.evaluate(CLEAN_HTML_JS, CHROME_SELECTORS)
        except PlaywrightError as e:
            print(f"[extract] Could not read HTML for {url}: {type(e).__name__}")
            return None
    finally:
        try:
            page.close()
        except PlaywrightError:
            pass


def normalize_entries(entries: List[PostEntry], page_url: str) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    seen = set()
    for e in entries:
        url = urljoin(page_url, e.url.strip()) if e.url else ""
        if not url or url in seen:
            continue
        seen.add(url)
        out.append({"title": e.title.strip(), "url": url, "date": e.date or None})
        if len(out) >= MAX_POSTS:
            break
    return out


def extract_from_html(client: StructuredExtractionClient, page_url: str, cleaned_html: str) -> Dict[str, Any]:
    """The record written for one listing page."""
    outcome: ExtractionOutcome = client.request(build_prompt(page_url, cleaned_html), List[PostEntry])
    usage = outcome.usage.model_dump() if outcome.usage else None
    if not outcome.ok:
        print(f"[extract] Extraction failed for {page_url}: {outcome.error_kind} ({outcome.message})")
        return {"source": page_url, "extracted": [], "usage": usage, "error": outcome.error_kind}
    posts = normalize_entries(outcome.data, page_url)
    print(f"[extract] {page_url}: {len(posts)} post(s) (attempts={outcome.attempts})")
    return {"source": page_url, "extracted": posts, "usage": usage}


def listing_pages(discovery: List[Dict[str, Any]]) -> List[str]:
    """Every matched listing page from a discovery artifact, first occurrence kept."""
    pages: List[str] = []
    for entry in discovery or []:
        if not isinstance(entry, dict):
            continue
        for m in entry.get("matches") or []:
            if isinstance(m, str) and m.strip():
                pages.append(m.strip())
    return list(dict.fromkeys(pages))


def run_extraction(
    discovery_path: str = settings.DISCOVERY_OUTPUT,
    out_dir: str = settings.EXTRACTED_POSTS_DIR,
    client: Optional[StructuredExtractionClient] = None,
    browser=None,
    delay: float = settings.POLITENESS_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    with open(discovery_path, "r", encoding="utf-8") as f:
        pages = listing_pages(json.load(f))
    print(f"[extract] {len(pages)} listing page(s) from {discovery_path}")
    client = client or StructuredExtractionClient(create_llm_service())
    os.makedirs(out_dir, exist_ok=True)

    def _run(b) -> Dict[str, Any]:
        totals: Optional[TokenUsage] = None
        written: List[str] = []
        for i, page_url in enumerate(pages):
            if i:
                sleep(delay)
            html = fetch_clean_html(b, page_url)
            if html is None:
                continue
            record = extract_from_html(client, page_url, html)
            if record.get("usage"):
                totals = add_usage(totals, TokenUsage(**record["usage"]))
            out_path = os.path.join(out_dir, output_filename(page_url))
            with open(out_path, "w", encoding="utf-8") as f:
                json.dump(record, f, ensure_ascii=False, indent=2)
            written.append(out_path)
        usage = (totals or TokenUsage()).model_dump()
        print(f"[extract] Usage: input={usage['input_tokens']} output={usage['output_tokens']} total={usage['total_tokens']}")
        return {"pages": len(pages), "files": written, "usage": usage}

    if browser is not None:
        return _run(browser)
    with browser_session(headless=not settings.HEADFUL) as b:
        return _run(b)


def _cli():
    import argparse

    parser = argparse.ArgumentParser(description="Extract up to 5 posts from each discovered blog page")
    parser.add_argument("input", nargs="?", default=settings.DISCOVERY_OUTPUT, help="Discovery results JSON")
    parser.add_argument("output_dir", nargs="?", default=settings.EXTRACTED_POSTS_DIR, help="Directory for posts_*.json")
    args = parser.parse_args()

    try:
        summary = run_extraction(args.input, args.output_dir)
    except LLMConfigurationError as e:
        raise SystemExit(f"[extract] {e}")
    except FileNotFoundError:
        raise SystemExit(f"[extract] Discovery results not found: {args.input}")
    print(json.dumps({"success": True, "output": args.output_dir, "files": len(summary["files"])}, ensure_ascii=False))


if __name__ == "__main__":
    _cli()
