import os
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as du_parser

import settings


DATE_KEYS = [
    "date",
    "published",
    "published_at",
    "publishedAt",
    "published_date",
    "iso_date",
    "date_published",
    "created_at",
    "datetime",
]

DEFAULT_WINDOW_HOURS = 24


def parse_date_any(value: Any) -> Optional[datetime]:
    """Parse many date formats. Return timezone-aware datetime if possible.

    Priority:
    - numbers: epoch milliseconds
    - strict ISO-8601 subset via fromisoformat
    - dateutil parser (handles RFC/locale formats, offsets)
    Naive values are taken as UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    s = str(value).strip()
    if not s:
        return None
    # Fast path: strict ISO-8601
    try:
        iso = s[:-1] + "+00:00" if s.endswith("Z") else s
        dt = datetime.fromisoformat(iso)
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    try:
        dt = du_parser.parse(s)
    except (ValueError, OverflowError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def detect_post_date(post: Dict[str, Any]) -> Optional[datetime]:
    if not isinstance(post, dict):
        return None
    for key in DATE_KEYS:
        if post.get(key):
            dt = parse_date_any(post[key])
            if dt:
                return dt
    meta = post.get("meta")
    if isinstance(meta, dict) and meta.get("date"):
        dt = parse_date_any(meta["date"])
        if dt:
            return dt
    jsonld = post.get("jsonld")
    if isinstance(jsonld, dict) and jsonld.get("datePublished"):
        return parse_date_any(jsonld["datePublished"])
    return None


def posts_from_document(data: Any, source_file: Optional[str] = None) -> List[Dict[str, Any]]:
    """Posts from any of the accepted artifact shapes.

    [{"extracted": [...]}, ...], [post, ...], {"extracted": [...]},
    {"results": [{"extracted": [...]}]} or a single post {"url": ...}.
    """
    found: List[Dict[str, Any]] = []
    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict) and isinstance(item.get("extracted"), list):
                found.extend(p for p in item["extracted"] if isinstance(p, dict))
            elif isinstance(item, dict) and item.get("url"):
                found.append(item)
    elif isinstance(data, dict):
        if isinstance(data.get("extracted"), list):
            found.extend(p for p in data["extracted"] if isinstance(p, dict))
        elif isinstance(data.get("results"), list):
            for r in data["results"]:
                if isinstance(r, dict) and isinstance(r.get("extracted"), list):
                    found.extend(p for p in r["extracted"] if isinstance(p, dict))
        elif data.get("url"):
            found.append(data)
    if source_file:
        return [{"_sourceFile": source_file, **p} for p in found]
    return [dict(p) for p in found]


def gather_posts(input_path: str) -> List[Dict[str, Any]]:
    if os.path.isdir(input_path):
        posts: List[Dict[str, Any]] = []
        for name in sorted(os.listdir(input_path)):
            if not name.endswith(".json"):
                continue
            try:
                with open(os.path.join(input_path, name), "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                print(f"[recent] Skip unreadable {name}: {e}")
                continue
            posts.extend(posts_from_document(data, source_file=name))
        return posts
    with open(input_path, "r", encoding="utf-8") as f:
        return posts_from_document(json.load(f))


def filter_recent(posts: List[Dict[str, Any]], hours: float = DEFAULT_WINDOW_HOURS, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Posts dated within the last ``hours``; undated posts are dropped."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=max(0.0, float(hours)))
    recent: List[Dict[str, Any]] = []
    for p in posts:
        dt = detect_post_date(p)
        if dt is None or dt < cutoff:
            continue
        recent.append({"_detected_date": dt.astimezone(timezone.utc).isoformat(), **p})
    return recent


def run_recent_filter(
    input_path: str = settings.EXTRACTED_POSTS_DIR,
    out_path: str = settings.RECENT_POSTS_OUTPUT,
    hours: float = DEFAULT_WINDOW_HOURS,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    posts = gather_posts(input_path)
    recent = filter_recent(posts, hours=hours, now=now)
    out = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "window_hours": hours,
        "count": len(recent),
        "posts": recent,
    }
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(out, f, ensure_ascii=False, indent=2)
    print(f"[recent] {len(recent)} of {len(posts)} post(s) within {hours}h -> {out_path}")
    return out


def _cli():
    import argparse

    parser = argparse.ArgumentParser(description="Keep extracted posts published within a lookback window")
    parser.add_argument("input", nargs="?", default=settings.EXTRACTED_POSTS_DIR, help="Directory of posts_*.json or a combined JSON file")
    parser.add_argument("output", nargs="?", default=settings.RECENT_POSTS_OUTPUT, help="Output JSON path")
    parser.add_argument("hours", nargs="?", type=float, default=DEFAULT_WINDOW_HOURS, help="Lookback window in hours")
    args = parser.parse_args()

    if not os.path.exists(args.input):
        raise SystemExit(f"[recent] Input not found: {args.input}")
    run_recent_filter(args.input, args.output, args.hours)
    print(json.dumps({"success": True, "output": args.output}, ensure_ascii=False))


if __name__ == "__main__":
    _cli()
