"""Sweep expired deal room drafts out of the drafts file.

Drafts are also purged lazily on every read; this is for running from cron
so the file does not grow between editing sessions.
"""

import structlog

from dealroom.config import StorageConfig
from dealroom.drafts import DraftStore
from dealroom.logs import configure_logging

logger = structlog.get_logger(__name__)


def main() -> int:
    configure_logging()
    config = StorageConfig.from_env()
    store = DraftStore(config)
    store.ensure_data_files_exist()
    removed = store.cleanup_expired_drafts()
    logger.info("draft_cleanup_finished", removed=removed, drafts_path=str(config.drafts_path))
    return removed


if __name__ == "__main__":
    main()
