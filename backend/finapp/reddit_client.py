import praw
from finapp.config import settings as default_settings


def get_reddit_client(settings=None):
    settings = settings or default_settings
    if not settings.REDDIT_CLIENT_ID or not settings.REDDIT_CLIENT_SECRET:
        raise ValueError("Reddit credentials missing in environment variables")

    credentials = {}
    if settings.REDDIT_USERNAME and settings.REDDIT_PASSWORD:
        credentials = {"username": settings.REDDIT_USERNAME, "password": settings.REDDIT_PASSWORD}

    reddit = praw.Reddit(
        client_id=settings.REDDIT_CLIENT_ID,
        client_secret=settings.REDDIT_CLIENT_SECRET,
        user_agent=settings.REDDIT_USER_AGENT,
        **credentials,
    )
    if not credentials:
        reddit.read_only = True
    return reddit
