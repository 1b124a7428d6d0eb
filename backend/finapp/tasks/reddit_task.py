import logging
import math

from finapp.reddit_client import get_reddit_client

logger = logging.getLogger(__name__)


def clean_text(text: str) -> str:
    """Нормализует пробелы и обрезает до разумного размера."""
    if not text:
        return ""
    return " ".join(text.split())[:2000]


def post_to_raw(post, subreddit_name: str) -> dict:
    return {
        "provider": "reddit",
        "id": post.id,
        "title": clean_text(post.title),
        "selftext": clean_text(post.selftext),
        "url": getattr(post, "url", ""),
        "permalink": post.permalink,
        "created_utc": post.created_utc,
        "subreddit": subreddit_name,
        "score": getattr(post, "score", None),
    }


def fetch_reddit_news(subreddits: list, limit: int, settings=None, reddit=None) -> list:
    """Горячие посты из финансовых сабреддитов.

    Args:
        subreddits: сабреддиты, которые опрашиваем (уже урезанный список)
        limit: общий лимит, делится поровну между сабреддитами
        reddit: готовый praw-клиент (для тестов); иначе создаётся новый
    """
    if not subreddits or limit <= 0:
        return []
    per_sub = math.ceil(limit / len(subreddits))

    try:
        reddit = reddit or get_reddit_client(settings)
    except ValueError as e:
        logger.warning(f"⚠️ Reddit source disabled: {e}")
        return []

    results = []
    for subreddit_name in subreddits:
        try:
            for post in reddit.subreddit(subreddit_name).hot(limit=per_sub):
                # sticky-посты и пустые self-посты пропускаем
                if getattr(post, "stickied", False):
                    continue
                if getattr(post, "is_self", False) and not post.selftext:
                    continue
                results.append(post_to_raw(post, subreddit_name))
        except Exception as e:
            logger.warning(f"⚠️ Error fetching r/{subreddit_name}: {e}")
            continue  # не падаем из-за одного сабреддита

    logger.info(f"✅ Found {len(results)} Reddit posts in {subreddits}")
    return results
