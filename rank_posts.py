"""
Post ranking
============

Visit each recent post, pull title / description / main text / publish date
from the rendered page and ask the model for a usefulness score (1-10) plus a
one or two sentence summary. Token usage is summed over the run and turned
into an estimated cost when prices are configured.

Output: outputs/ranked-posts/ranked_posts.json
    {"generated_at", "source", "totals", "results": [...sorted by ai_score desc]}
"""
import os
import re
import json
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError

import settings
from models import PostRanking, TokenUsage
from homepage_scanner import browser_session, new_page
from recent_posts import parse_date_any
from structured_llm import StructuredExtractionClient, add_usage, create_llm_service, LLMConfigurationError


MAX_CONTENT_CHARS = 3000

PAGE_FIELDS_JS = """() => {
    const attr = (sel, name) => {
        const el = document.querySelector(sel);
        return el ? (el.getAttribute(name) || '') : '';
    };
    const text = sel => {
        const el = document.querySelector(sel);
        return el ? (el.innerText || '') : '';
    };
    const description = attr('meta[name="description"]', 'content') || attr('meta[property="og:description"]', 'content');
    const content = text('article') || text('main') || text('body');
    const date = attr('time[datetime]', 'datetime')
        || attr('meta[property="article:published_time"]', 'content')
        || attr('meta[property="og:published_time"]', 'content')
        || attr('meta[name="pubdate"]', 'content')
        || attr('meta[name="publish_date"]', 'content')
        || attr('meta[name="date"]', 'content')
        || text('time');
    return {title: document.title || '', description, content, date};
}"""

RANKING_INSTRUCTION = (
    "You are an expert assistant that rates how useful a blog post is for tech professionals "
    "in their daily work (engineering, devops, product, data, ML). "
    'Return a JSON object with two keys: "score" (integer 1-10, 10 = extremely useful) and '
    '"summary" (a short 1-2 sentence actionable insight). '
    "Do not return any other text. Be concise and precise."
)


def _normalize_date(raw: Optional[str]) -> Optional[str]:
    if not raw or not str(raw).strip():
        return None
    dt = parse_date_any(raw)
    return dt.astimezone(timezone.utc).isoformat() if dt else str(raw).strip()


def extract_page_fields(page, url: str, timeout_ms: int = settings.PAGE_TIMEOUT_MS) -> Optional[Dict[str, Any]]:
    """{title, description, content, date} of a rendered post, or None when it cannot be loaded."""
    try:
        page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        fields = page.evaluate(PAGE_FIELDS_JS) or {}
    except PlaywrightError as e:
        print(f"[rank] Navigation failed for {url}: {type(e).__name__}")
        return None
    return {
        "title": (fields.get("title") or "").strip(),
        "description": (fields.get("description") or "").strip(),
        "content": re.sub(r"\s+", " ", fields.get("content") or "").strip(),
        "date": _normalize_date(fields.get("date")),
    }


def build_ranking_prompt(item: Dict[str, Any]) -> str:
    body = "\n\n".join([
        f"URL: {item.get('url', '')}",
        f"Title: {item.get('title') or ''}",
        f"Description: {item.get('description') or ''}",
        f"Content (truncated): {(item.get('content') or '')[:MAX_CONTENT_CHARS]}",
    ])
    return f"{RANKING_INSTRUCTION}\n\n{body}\n\nRespond with JSON matching the schema."


def estimate_cost(
    usage: Optional[TokenUsage],
    price_input_per_1m: float = settings.PRICE_INPUT_PER_1M,
    price_output_per_1m: float = settings.PRICE_OUTPUT_PER_1M,
) -> Dict[str, float]:
    usage = usage or TokenUsage()
    cost_input = usage.input_tokens / 1_000_000 * price_input_per_1m if price_input_per_1m else 0.0
    cost_output = usage.output_tokens / 1_000_000 * price_output_per_1m if price_output_per_1m else 0.0
    return {"cost_input": cost_input, "cost_output": cost_output, "cost_total": cost_input + cost_output}


def score_post(client: StructuredExtractionClient, item: Dict[str, Any]) -> Dict[str, Any]:
    """Attach ai_score / ai_summary / ai_raw / ai_usage to a copy of item."""
    out = dict(item)
    outcome = client.request(build_ranking_prompt(item), PostRanking)
    if outcome.ok:
        out["ai_score"] = outcome.data.score
        out["ai_summary"] = outcome.data.summary
        out["ai_raw"] = outcome.raw_text
    else:
        out["ai_score"] = None
        out["ai_summary"] = f"AI structured output failed: {outcome.error_kind}"
        out["ai_raw"] = outcome.raw_text
    if outcome.usage is not None:
        cost = estimate_cost(outcome.usage)
        out["ai_usage"] = {**outcome.usage.model_dump(), **cost}
        print(
            f"[rank] {item.get('url')} tokens: input={outcome.usage.input_tokens} "
            f"output={outcome.usage.output_tokens} total={outcome.usage.total_tokens} "
            f"estimated cost: ${cost['cost_total']:.8f}"
        )
    return out


def rank_results(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(results, key=lambda r: r.get("ai_score") or 0, reverse=True)


def _post_item(post: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "url": post.get("url"),
        "title": fields.get("title") or post.get("title") or "",
        "description": fields.get("description") or post.get("description") or "",
        "content": fields.get("content") or "",
        "date": fields.get("date") or post.get("date") or post.get("pubDate") or post.get("published") or None,
        "source_date": post.get("date"),
        "source_detected_date": post.get("_detected_date"),
    }


def rank_posts(
    posts: List[Dict[str, Any]],
    client: StructuredExtractionClient,
    page,
    delay: float = settings.POLITENESS_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    results: List[Dict[str, Any]] = []
    totals: Optional[TokenUsage] = None
    total = len(posts)
    for i, post in enumerate(posts, 1):
        url = post.get("url")
        if not url:
            continue
        print(f"[rank] ({i}/{total}) Visiting {url}")
        fields = extract_page_fields(page, url)
        if fields is None:
            results.append({"url": url, "title": post.get("title") or "", "description": "", "content": "", "ai_score": 0, "ai_summary": "error: navigation failed"})
        else:
            scored = score_post(client, _post_item(post, fields))
            if scored.get("ai_usage"):
                totals = add_usage(totals, TokenUsage(**{k: scored["ai_usage"][k] for k in ("input_tokens", "output_tokens", "total_tokens")}))
            results.append(scored)
        if i < total:
            sleep(delay)
    totals = totals or TokenUsage()
    return {"totals": {**totals.model_dump(), **estimate_cost(totals)}, "results": rank_results(results)}


def run_ranking(
    recent_path: str = settings.RECENT_POSTS_OUTPUT,
    out_path: str = settings.RANKED_POSTS_OUTPUT,
    client: Optional[StructuredExtractionClient] = None,
    browser=None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    with open(recent_path, "r", encoding="utf-8") as f:
        recent = json.load(f)
    posts = recent.get("posts") if isinstance(recent, dict) else None
    posts = [p for p in (posts or []) if isinstance(p, dict)]
    if not posts:
        print(f"[rank] No posts found in {recent_path}")
    elif client is None:
        client = StructuredExtractionClient(create_llm_service())

    def _run(b) -> Dict[str, Any]:
        page = new_page(b)
        try:
            return rank_posts(posts, client, page, sleep=sleep)
        finally:
            try:
                page.close()
            except PlaywrightError:
                pass

    if not posts:
        ranked = rank_posts([], client, None, sleep=sleep)
    elif browser is not None:
        ranked = _run(browser)
    else:
        with browser_session(headless=not settings.HEADFUL) as b:
            ranked = _run(b)

    payload = {"generated_at": datetime.now(timezone.utc).isoformat(), "source": recent_path, **ranked}
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    t = payload["totals"]
    print(f"[rank] Usage: input={t['input_tokens']} output={t['output_tokens']} total={t['total_tokens']} cost=${t['cost_total']:.6f}")
    print(f"[rank] Wrote {len(payload['results'])} ranked post(s) to {out_path}")
    return payload


def _cli():
    import argparse

    parser = argparse.ArgumentParser(description="Score recent posts for usefulness and sort them")
    parser.add_argument("input", nargs="?", default=settings.RECENT_POSTS_OUTPUT, help="recent_posts.json")
    parser.add_argument("--output", default=settings.RANKED_POSTS_OUTPUT, help="Output JSON path")
    args = parser.parse_args()

    try:
        run_ranking(args.input, args.output)
    except LLMConfigurationError as e:
        raise SystemExit(f"[rank] {e}")
    except FileNotFoundError:
        raise SystemExit(f"[rank] Recent posts not found: {args.input}")
    print(json.dumps({"success": True, "output": args.output}, ensure_ascii=False))


if __name__ == "__main__":
    _cli()
