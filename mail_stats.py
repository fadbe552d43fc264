"""Cross-folder account summary."""

from __future__ import annotations

import logging
from typing import List, Sequence

from mail_errors import ProtocolError
from mail_models import AccountStats, Folder
from mail_operations import MailOperations

log = logging.getLogger(__name__)

STATS_FOLDER_KEYWORDS = ("inbox", "sent", "draft", "trash")
MAX_STATS_FOLDERS = 5


def select_stats_folders(
    folders: Sequence[Folder],
    keywords: Sequence[str] = STATS_FOLDER_KEYWORDS,
    limit: int = MAX_STATS_FOLDERS,
) -> List[Folder]:
    """Folders whose lowercase name mentions a keyword, first ``limit`` in list order."""
    matching = [f for f in folders if any(k in f.name.lower() for k in keywords)]
    return matching[:limit]


class StatisticsAggregator:
    """
    Summarise the account by examining a handful of well-known folders.

    Only counters the server reports on selection are used, so the cost is
    one EXAMINE plus one ``UID SEARCH UNSEEN`` per folder regardless of
    mailbox size.  A folder that cannot be examined is skipped; the summary
    is built from whatever succeeded.
    """

    def __init__(self, operations: MailOperations, limit: int = MAX_STATS_FOLDERS) -> None:
        self.operations = operations
        self.limit = limit

    def collect(self) -> AccountStats:
        stats = AccountStats()
        targets = select_stats_folders(self.operations.list_folders(), limit=self.limit)
        for folder in targets:
            try:
                folder_stats = self.operations.folder_status(folder)
            except ProtocolError as exc:
                log.warning("Skipping folder %s in statistics: %s", folder.path, exc)
                continue
            stats.add(folder_stats)
        log.debug("Statistics collected: %d emails across %d folder(s)", stats.total_emails, len(stats.folders))
        return stats
