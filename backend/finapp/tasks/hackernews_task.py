import logging
from concurrent.futures import ThreadPoolExecutor

import requests

from finapp.utils.news_classifier import is_finance_related

logger = logging.getLogger(__name__)

MAX_WORKERS = 8
# Финансовых историй в топе мало, поэтому просматриваем больше id, чем нужно
SCAN_FACTOR = 4


def _fetch_story(base_url: str, story_id, timeout: float):
    try:
        resp = requests.get(f"{base_url}/item/{story_id}.json", timeout=timeout)
        if resp.status_code != 200:
            return None
        return resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.debug(f"HN story {story_id} failed: {e}")
        return None


def fetch_hackernews(base_url: str, limit: int, timeout: float = 10.0) -> list:
    """Топ Hacker News, отфильтрованный по финансовым ключевым словам."""
    if limit <= 0:
        return []
    try:
        resp = requests.get(f"{base_url}/topstories.json", timeout=timeout)
        resp.raise_for_status()
        story_ids = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"⚠️ Hacker News top stories failed: {e}")
        return []
    if not isinstance(story_ids, list):
        logger.warning(f"⚠️ Hacker News returned {type(story_ids).__name__} instead of list")
        return []

    scan_ids = story_ids[: limit * SCAN_FACTOR]
    with ThreadPoolExecutor(max_workers=MAX_WORKERS) as pool:
        stories = list(pool.map(lambda sid: _fetch_story(base_url, sid, timeout), scan_ids))

    results = []
    for story in stories:
        if not isinstance(story, dict) or not story.get("url"):
            continue
        if not is_finance_related(story.get("title", "")):
            continue
        results.append({"provider": "hackernews", **story})
        if len(results) >= limit:
            break

    logger.info(f"✅ Hacker News: {len(results)} finance stories out of {len(scan_ids)} scanned")
    return results
