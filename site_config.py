"""
Site configuration
==================

Load the list of sites to inspect and the path patterns to look for.

Accepted sites.json shapes:
1. ["https://a.com", "b.com"]
2. [{"url": "https://a.com", "patterns": ["/news"], "rootOnly": false}, ...]
   ("site" or "root" may stand in for "url")
3. {"sites": [...], "patterns": ["/blog"]}   ("urls" or "list" also accepted)

Patterns come from patterns.json (a non-empty array of non-empty strings)
and default to ["/blog", "/posts"]. Sites can also be read from an Excel
sheet: the column headed "url", otherwise the first column.
"""
import os
import json
from urllib.parse import urlsplit
from typing import Any, List, Optional

from models import DEFAULT_PATTERNS, SiteTarget
from sitemap_discovery import normalize_root_url


DEFAULT_SITES_PATH = os.path.join("configs", "sites.json")
DEFAULT_PATTERNS_PATH = os.path.join("configs", "patterns.json")


class SiteConfigError(ValueError):
    """Sites or patterns configuration cannot be used."""


def _read_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise SiteConfigError(f"Config file not found: {path}")
    except json.JSONDecodeError as e:
        raise SiteConfigError(f"Invalid JSON in {path}: {e}")


def is_valid_site_url(url: str) -> bool:
    if not isinstance(url, str) or not url.strip() or any(c.isspace() for c in url.strip()):
        return False
    try:
        p = urlsplit(normalize_root_url(url))
    except ValueError:
        return False
    return p.scheme in ("http", "https") and bool(p.hostname)


def pattern_errors(patterns: Any) -> List[str]:
    if not isinstance(patterns, list) or not patterns:
        return ["patterns must be a non-empty array"]
    return [
        f"patterns[{i}] must be a non-empty string"
        for i, p in enumerate(patterns)
        if not isinstance(p, str) or not p.strip()
    ]


def _clean_patterns(patterns: List[str]) -> List[str]:
    return list(dict.fromkeys(p.strip() for p in patterns))


def load_patterns(path: Optional[str] = None) -> List[str]:
    """patterns.json when present, else the defaults."""
    path = path or DEFAULT_PATTERNS_PATH
    if not os.path.exists(path):
        return list(DEFAULT_PATTERNS)
    data = _read_json(path)
    errors = pattern_errors(data)
    if errors:
        raise SiteConfigError(f"{path}: " + "; ".join(errors))
    return _clean_patterns(data)


def _site_items(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("sites", "urls", "list"):
            if isinstance(data.get(key), list):
                return data[key]
    raise SiteConfigError("sites config must be an array or an object with 'sites', 'urls' or 'list'")


def parse_sites(data: Any, default_patterns: Optional[List[str]] = None) -> List[SiteTarget]:
    """Turn any accepted sites.json shape into SiteTargets.

    Every problem found is reported at once in a single SiteConfigError.
    """
    patterns = list(default_patterns) if default_patterns else list(DEFAULT_PATTERNS)
    if isinstance(data, dict) and data.get("patterns") is not None:
        errors = pattern_errors(data["patterns"])
        if errors:
            raise SiteConfigError("; ".join(errors))
        patterns = _clean_patterns(data["patterns"])

    items = _site_items(data)
    if not items:
        raise SiteConfigError("sites must be a non-empty array")

    targets: List[SiteTarget] = []
    errors: List[str] = []
    seen = set()
    for i, item in enumerate(items):
        site_patterns = patterns
        root_only = True
        if isinstance(item, str):
            url = item
        elif isinstance(item, dict):
            url = item.get("url") or item.get("site") or item.get("root") or ""
            if item.get("patterns") is not None:
                perrs = pattern_errors(item["patterns"])
                if perrs:
                    errors.extend(f"sites[{i}].{e}" for e in perrs)
                    continue
                site_patterns = _clean_patterns(item["patterns"])
            root_only = item.get("rootOnly", item.get("root_only", True)) is not False
        else:
            errors.append(f"sites[{i}] must be a URL string or an object")
            continue

        if not is_valid_site_url(url):
            errors.append(f"sites[{i}] has an invalid URL: {url!r}")
            continue
        root_url = normalize_root_url(url)
        if root_url in seen:
            continue
        seen.add(root_url)
        targets.append(SiteTarget(root_url=root_url, patterns=site_patterns, root_only=root_only))

    if errors:
        raise SiteConfigError("; ".join(errors))
    return targets


def load_sites(path: Optional[str] = None, patterns_path: Optional[str] = None) -> List[SiteTarget]:
    path = path or DEFAULT_SITES_PATH
    targets = parse_sites(_read_json(path), load_patterns(patterns_path))
    print(f"[config] Loaded {len(targets)} site(s) from {path}")
    return targets


def load_sites_from_excel(path: str, patterns: Optional[List[str]] = None) -> List[SiteTarget]:
    """URLs from the active sheet: column headed 'url', otherwise the first column."""
    from openpyxl import load_workbook

    if not os.path.exists(path):
        raise SiteConfigError(f"Excel not found: {path}")
    wb = load_workbook(path, read_only=True)
    try:
        ws = wb.active
        urls: List[str] = []
        url_idx = 0
        for i, row in enumerate(ws.iter_rows(values_only=True)):
            if i == 0 and row:
                header = [str(c).strip().lower() if c is not None else "" for c in row]
                if "url" in header:
                    url_idx = header.index("url")
                    continue
            if not row:
                continue
            cell = row[url_idx] if url_idx < len(row) else None
            if cell is None or not str(cell).strip():
                continue
            urls.append(str(cell).strip())
    finally:
        wb.close()
    if not urls:
        raise SiteConfigError(f"No URLs in Excel: {path}")
    print(f"[config] Read {len(urls)} URL(s) from {path}")
    return parse_sites(urls, patterns)


def validate_config(sites_path: Optional[str] = None, patterns_path: Optional[str] = None) -> List[str]:
    """Human-readable problems with the config files; empty when both are usable."""
    problems: List[str] = []
    patterns: Optional[List[str]] = None
    try:
        patterns = load_patterns(patterns_path)
    except SiteConfigError as e:
        problems.append(str(e))
    try:
        parse_sites(_read_json(sites_path or DEFAULT_SITES_PATH), patterns)
    except SiteConfigError as e:
        problems.append(str(e))
    return problems


def _cli():
    import argparse

    parser = argparse.ArgumentParser(description="Validate sites and patterns configuration")
    parser.add_argument("--sites", default=DEFAULT_SITES_PATH, help="Path to sites.json")
    parser.add_argument("--patterns", default=DEFAULT_PATTERNS_PATH, help="Path to patterns.json")
    args = parser.parse_args()

    problems = validate_config(args.sites, args.patterns)
    if problems:
        for p in problems:
            print(f"[config] {p}")
        raise SystemExit(1)
    print("[config] OK")


if __name__ == "__main__":
    _cli()
