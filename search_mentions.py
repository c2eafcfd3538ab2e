"""
Mentions search
===============

Visit every extracted post, read its visible text and ask the model which tech
companies and VC funds it mentions. Each name is returned with the text
snippets around its occurrences so a reader can check the context.

Input: outputs/extracted-posts (directory of posts_*.json) or one combined JSON
Output: outputs/extracted-posts/mentions_results.json
    {"generated_at", "counts": {"urls"}, "totals", "results": [...]}
"""
import os
import re
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError

import settings
from models import Mentions, TokenUsage
from homepage_scanner import browser_session, new_page
from recent_posts import gather_posts
from structured_llm import StructuredExtractionClient, add_usage, create_llm_service, LLMConfigurationError


MAX_ARTICLE_CHARS = 20000
SNIPPET_RADIUS = 80

BODY_TEXT_JS = """() => {
    const body = document.body;
    if (!body) return '';
    return (body.innerText || '').replace(/\\s+/g, ' ');
}"""


def article_urls(input_path: str) -> List[Dict[str, Any]]:
    """[{url, sourceFile}] for every extracted post that has a URL."""
    items: List[Dict[str, Any]] = []
    for post in gather_posts(input_path):
        url = post.get("url")
        if isinstance(url, str) and url.strip():
            items.append({"url": url.strip(), "sourceFile": post.get("_sourceFile") or input_path})
    return items


def find_snippets(text: str, needle: str, radius: int = SNIPPET_RADIUS) -> List[str]:
    """Case-insensitive occurrences of needle with ``radius`` characters either side."""
    if not text or not needle:
        return []
    low = text.lower()
    n = needle.lower()
    snippets: List[str] = []
    idx = low.find(n)
    while idx != -1:
        start = max(0, idx - radius)
        end = min(len(text), idx + len(n) + radius)
        snippets.append(re.sub(r"\s+", " ", text[start:end]))
        idx = low.find(n, idx + 1)
    return snippets


def build_mentions_prompt(text: str) -> str:
    return (
        "Extract all unique tech company names and VC/fund names mentioned in the following article text. "
        'Return a JSON object with two arrays: "companies" and "funds". Only return JSON, nothing else.\n\n'
        f'Article text:\n"""\n{(text or "")[:MAX_ARTICLE_CHARS]}\n"""\n\n'
        "Notes: normalize names (do not include extra punctuation), include company names "
        "(products/brands owned by companies may be included), and include well-known VC funds."
    )


def _named_mentions(names: Optional[List[str]], text: str) -> List[Dict[str, Any]]:
    cleaned = [str(n).strip() for n in (names or []) if n is not None and str(n).strip()]
    return [{"name": name, "snippets": find_snippets(text, name)} for name in dict.fromkeys(cleaned)]


def read_article_text(page, url: str, timeout_ms: int = settings.PAGE_TIMEOUT_MS) -> Optional[str]:
    try:
        page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        return page.evaluate(BODY_TEXT_JS) or ""
    except PlaywrightError as e:
        print(f"[mentions] Navigation failed for {url}: {type(e).__name__}")
        return None


def mentions_for_text(client: StructuredExtractionClient, url: str, text: str, source_file: Optional[str] = None) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"url": url, "sourceFile": source_file, "companies": [], "funds": []}
    outcome = client.request(build_mentions_prompt(text), Mentions)
    if outcome.ok:
        entry["companies"] = _named_mentions(outcome.data.companies, text)
        entry["funds"] = _named_mentions(outcome.data.funds, text)
        entry["ai_raw"] = outcome.raw_text
    else:
        print(f"[mentions] Model extraction failed for {url}: {outcome.error_kind} ({outcome.message})")
        entry["ai_error"] = outcome.error_kind
    if outcome.usage is not None:
        entry["usage"] = outcome.usage.model_dump()
    return entry


def search_mentions(
    items: List[Dict[str, Any]],
    client: StructuredExtractionClient,
    page,
    delay: float = settings.POLITENESS_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    results: List[Dict[str, Any]] = []
    totals: Optional[TokenUsage] = None
    total = len(items)
    for i, item in enumerate(items, 1):
        url = item["url"]
        print(f"[mentions] ({i}/{total}) Visiting {url}")
        text = read_article_text(page, url)
        if text is None:
            results.append({"url": url, "sourceFile": item.get("sourceFile"), "error": "navigation failed"})
        else:
            entry = mentions_for_text(client, url, text, item.get("sourceFile"))
            if entry.get("usage"):
                totals = add_usage(totals, TokenUsage(**entry["usage"]))
            results.append(entry)
        if i < total:
            sleep(delay)
    return {"totals": (totals or TokenUsage()).model_dump(), "results": results}


def run_mentions_search(
    input_path: str = settings.EXTRACTED_POSTS_DIR,
    out_path: str = settings.MENTIONS_OUTPUT,
    client: Optional[StructuredExtractionClient] = None,
    browser=None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    items = article_urls(input_path)
    print(f"[mentions] Found {len(items)} article URL(s) to scan")
    if items and client is None:
        client = StructuredExtractionClient(create_llm_service())

    def _run(b) -> Dict[str, Any]:
        page = new_page(b)
        try:
            return search_mentions(items, client, page, sleep=sleep)
        finally:
            try:
                page.close()
            except PlaywrightError:
                pass

    if not items:
        found = search_mentions([], client, None, sleep=sleep)
    elif browser is not None:
        found = _run(browser)
    else:
        with browser_session(headless=not settings.HEADFUL) as b:
            found = _run(b)

    payload = {"generated_at": datetime.now(timezone.utc).isoformat(), "counts": {"urls": len(items)}, **found}
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    print(f"[mentions] Saved mentions for {len(payload['results'])} article(s) to {out_path}")
    return payload


def _cli():
    import argparse

    parser = argparse.ArgumentParser(description="Find tech company and VC fund mentions in extracted posts")
    parser.add_argument("input", nargs="?", default=settings.EXTRACTED_POSTS_DIR, help="Directory of posts_*.json or a combined JSON file")
    parser.add_argument("output", nargs="?", default=settings.MENTIONS_OUTPUT, help="Output JSON path")
    args = parser.parse_args()

    if not os.path.exists(args.input):
        raise SystemExit(f"[mentions] Input not found: {args.input}")
    if not article_urls(args.input):
        raise SystemExit("[mentions] No URLs found. Point input at the extracted-posts directory or a combined JSON.")
    try:
        run_mentions_search(args.input, args.output)
    except LLMConfigurationError as e:
        raise SystemExit(f"[mentions] {e}")
    print(json.dumps({"success": True, "output": args.output}, ensure_ascii=False))


if __name__ == "__main__":
    _cli()
