"""
Session Storage
===============

Persists finalized sleep sessions. The CSV store keeps one row per
session; the background store moves the write off the processing loop.
"""

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

import pandas as pd

from sleep_monitor.session import SleepSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Interface of the storage collaborator"""

    def save_session(self, session: SleepSession) -> str:
        """Persists the session and returns its id"""
        raise NotImplementedError

    def list_sessions(self) -> List[SleepSession]:
        raise NotImplementedError


def _format_timeline(session: SleepSession) -> str:
    return "|".join(f"{t:.3f}:{state}" for t, state in session.state_timeline)


def _parse_timeline(value) -> tuple:
    if not isinstance(value, str) or not value:
        return ()
    entries = []
    for item in value.split("|"):
        t, state = item.split(":", 1)
        entries.append((float(t), state))
    return tuple(entries)


class CsvSessionStore(SessionStore):
    """Appends sessions to a CSV file"""

    COLUMNS = [
        "session_id", "start_time", "end_time", "total_sleep_seconds",
        "wake_up_count", "quality_score", "deep_sleep_seconds",
        "light_sleep_seconds", "spasm_count", "avg_breathing_bpm", "state_timeline",
    ]

    def __init__(self, path: str = "recordings/sessions.csv"):
        """
        Args:
            path: CSV file, created with a header on first save
        """
        self.path = path

    def save_session(self, session: SleepSession) -> str:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        write_header = not os.path.exists(self.path) or os.path.getsize(self.path) == 0
        with open(self.path, 'a') as f:
            if write_header:
                f.write(",".join(self.COLUMNS) + "\n")
            f.write(f"{session.session_id},"
                    f"{session.start_time:.3f},"
                    f"{session.end_time:.3f},"
                    f"{session.total_sleep_seconds:.3f},"
                    f"{session.wake_up_count},"
                    f"{session.quality_score},"
                    f"{session.deep_sleep_seconds:.3f},"
                    f"{session.light_sleep_seconds:.3f},"
                    f"{session.spasm_count},"
                    f"{session.avg_breathing_bpm:.2f},"
                    f"{_format_timeline(session)}\n")

        logger.info("Session %s saved to %s", session.session_id, self.path)
        return session.session_id

    def list_sessions(self) -> List[SleepSession]:
        """Returns all stored sessions, newest first"""
        if not os.path.exists(self.path):
            return []

        df = pd.read_csv(self.path, dtype={"session_id": str, "state_timeline": str},
                         keep_default_na=False)
        sessions = [
            SleepSession(
                session_id=row["session_id"],
                start_time=float(row["start_time"]),
                end_time=float(row["end_time"]),
                total_sleep_seconds=float(row["total_sleep_seconds"]),
                wake_up_count=int(row["wake_up_count"]),
                quality_score=int(row["quality_score"]),
                deep_sleep_seconds=float(row["deep_sleep_seconds"]),
                light_sleep_seconds=float(row["light_sleep_seconds"]),
                spasm_count=int(row["spasm_count"]),
                avg_breathing_bpm=float(row["avg_breathing_bpm"]),
                state_timeline=_parse_timeline(row["state_timeline"]),
            )
            for _, row in df.iterrows()
        ]
        return sorted(sessions, key=lambda s: s.start_time, reverse=True)

    def get_session(self, session_id: str) -> Optional[SleepSession]:
        for session in self.list_sessions():
            if session.session_id == session_id:
                return session
        return None


class BackgroundSessionStore(SessionStore):
    """Runs saves of another store on a single worker thread"""

    def __init__(self, inner: SessionStore):
        self.inner = inner
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="session-store")

    def save_session(self, session: SleepSession) -> str:
        future = self._executor.submit(self.inner.save_session, session)
        future.add_done_callback(self._log_failure)
        return session.session_id

    @staticmethod
    def _log_failure(future: Future):
        error = future.exception()
        if error is not None:
            logger.error("Background save failed: %s", error)

    def list_sessions(self) -> List[SleepSession]:
        return self.inner.list_sessions()

    def close(self):
        """Waits for pending saves"""
        self._executor.shutdown(wait=True)
