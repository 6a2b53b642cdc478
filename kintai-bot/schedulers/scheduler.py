# schedulers/scheduler.py
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from services.memory_session_store import MemorySessionStore

logger = logging.getLogger(__name__)

PURGE_JOB_ID = "session_purge"


class SessionPurgeScheduler:
    """KVセッションストアの期限切れエントリを定期的に削除する

    期限切れのエントリは読み取り時にも無視されるので、削除はメモリの回収だけを目的とする。
    """

    def __init__(self, session_store: MemorySessionStore, interval_minutes: int):
        self._session_store = session_store
        self._interval = interval_minutes
        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self.purge,
            trigger=IntervalTrigger(minutes=self._interval),
            id=PURGE_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def purge(self) -> int:
        """期限切れエントリを削除して件数を返す"""
        purged = self._session_store.purge_expired()
        if purged:
            logger.info(
                "Purged %d expired session(s), %d still open", purged, len(self._session_store)
            )
        return purged

    def start(self):
        self._scheduler.start()
        logger.info("Purging expired sessions every %d minutes", self._interval)

    def stop(self):
        self._scheduler.shutdown(wait=False)
