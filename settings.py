"""
Runtime settings read once from the environment (.env supported).
"""
import os

try:
    from dotenv import load_dotenv
    load_dotenv(override=False)
except Exception:
    pass


def _env_flag(name: str, default: str = "0") -> bool:
    return str(os.getenv(name, default)).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    try:
        return max(minimum, int(os.getenv(name, str(default)) or default))
    except Exception:
        return default


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    try:
        return max(minimum, float(os.getenv(name, str(default)) or default))
    except Exception:
        return default


def _env_price(*names: str) -> float:
    # First variable that is set wins; prices are USD per 1M tokens
    for name in names:
        raw = os.getenv(name)
        if raw is None or not str(raw).strip():
            continue
        try:
            return float(raw)
        except Exception:
            return 0.0
    return 0.0


# Network
FETCH_TIMEOUT_SECONDS = _env_float("FETCH_TIMEOUT_SECONDS", 15.0, minimum=1.0)
NAV_TIMEOUT_MS = _env_int("NAV_TIMEOUT_MS", 30000, minimum=1000)
PAGE_TIMEOUT_MS = _env_int("PAGE_TIMEOUT_MS", 20000, minimum=1000)

# Homepage scan policy: "fallback" (only when sitemap matching is empty) or "always"
HOMEPAGE_SCAN = str(os.getenv("HOMEPAGE_SCAN", "fallback")).strip().lower()
if HOMEPAGE_SCAN not in ("fallback", "always"):
    HOMEPAGE_SCAN = "fallback"
HEADFUL = _env_flag("HEADFUL", "0")

# LLM
LLM_TIMEOUT_SECONDS = _env_float("LLM_TIMEOUT_SECONDS", 60.0, minimum=1.0)
LLM_MAX_ATTEMPTS = _env_int("LLM_MAX_ATTEMPTS", 3, minimum=1)
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-5-nano")
DEEPSEEK_MODEL = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")
DEEPSEEK_BASE_URL = os.getenv("DEEPSEEK_BASE_URL", "https://api.deepseek.com")

# Cost estimation
PRICE_INPUT_PER_1M = _env_price("TOKEN_PRICE_INPUT_PER_1M", "PRICE_PER_1M_INPUT")
PRICE_OUTPUT_PER_1M = _env_price("TOKEN_PRICE_OUTPUT_PER_1M", "PRICE_PER_1M_OUTPUT")

# Downstream stages
POLITENESS_DELAY_SECONDS = _env_float("POLITENESS_DELAY_SECONDS", 0.3)

# Output locations
OUTPUTS_DIR = os.getenv("OUTPUTS_DIR", "outputs")
DISCOVERY_OUTPUT = os.path.join(OUTPUTS_DIR, "find-blog-posts", "find-blog-posts.json")
EXTRACTED_POSTS_DIR = os.path.join(OUTPUTS_DIR, "extracted-posts")
RECENT_POSTS_OUTPUT = os.path.join(OUTPUTS_DIR, "recent-posts", "recent_posts.json")
RANKED_POSTS_OUTPUT = os.path.join(OUTPUTS_DIR, "ranked-posts", "ranked_posts.json")
MENTIONS_OUTPUT = os.path.join(EXTRACTED_POSTS_DIR, "mentions_results.json")
