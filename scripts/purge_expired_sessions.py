#!/usr/bin/env python3
"""Delete expired session rows. Safe to run from cron; expired sessions are already unusable."""
import logging

from app.core.logger import init_logging
from app.db.session import session_scope
from app.services.session_service import SessionBridge


def main() -> int:
    init_logging()
    with session_scope() as db:
        removed = SessionBridge(db).purge_expired()
    logging.getLogger("scripts.purge_sessions").info("Removed %d expired sessions", removed)
    return removed


if __name__ == "__main__":
    main()
