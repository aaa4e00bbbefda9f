import logging
import sys

from portfolio.db.couchdb import CouchClient
from portfolio.repos.posts_repo import CouchPostsRepo
from portfolio.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    client = CouchClient(settings)
    try:
        client.open()
        if not client.ping():
            sys.exit(1)
        posts = CouchPostsRepo(client).list_all()
        logger.info(f"Connection OK: {len(posts)} posts in '{settings.BLOGS_COLLECTION}'")
    except Exception as e:
        logger.error(f"Connection test failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        client.close()
