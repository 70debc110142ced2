"""
Review workflow - human oversight of bank entries.

Reviewers rate caption accuracy, run search tests against the live index and
blacklist bad images. Every mutation marks the bank dirty and queues a sync on
the background dispatcher; sync failures are logged, never raised here.
"""

from typing import List, Optional, Tuple

from ..bank.store import ImageBankStore
from ..bank.types import ACCURACY_RATINGS, REVIEW_STATUSES, BankEntry, Review, SearchTest, utc_now_iso
from ..util.logging import logger
from .config import SYNC_QUEUE_SIZE
from .tasks import BackgroundDispatcher

SEARCH_TEST_LIMIT = 10
NEXT_ENTRY_WINDOW = 100


class EntryNotFoundError(KeyError):
    """Raised when a review action targets an unknown entry id."""

    def __init__(self, entry_id: str):
        super().__init__(entry_id)
        self.entry_id = entry_id

    def __str__(self) -> str:
        return f"Entry not found: {self.entry_id}"


def default_review() -> Review:
    """Review state of an entry nobody has looked at yet."""
    return Review(accuracy=None, accuracy_at=None, search_tests=[], status="pending", notes=None)


class ReviewWorkflow:
    """Applies reviewer decisions to a loaded bank."""

    def __init__(self, bank: ImageBankStore, dispatcher: Optional[BackgroundDispatcher] = None):
        self.bank = bank
        self.dispatcher = dispatcher or BackgroundDispatcher("bank-sync", SYNC_QUEUE_SIZE)

    def _get_entry(self, entry_id: str) -> BankEntry:
        entry = self.bank.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    async def _schedule_sync(self, reason: str) -> None:
        await self.dispatcher.submit(f"bank_sync:{reason}", self.bank.sync)

    async def record_search_test(self, entry_id: str, query: str) -> Tuple[SearchTest, List[BankEntry]]:
        """Search the bank and record where the entry ranked.

        Returns the recorded test and the entries the search returned.
        """
        entry = self._get_entry(entry_id)
        if not query or not query.strip():
            raise ValueError("query cannot be empty")

        result = await self.bank.search(query, limit=SEARCH_TEST_LIMIT)
        found_entries = [hit.entry for hit in result.results]

        rank = None
        for position, found in enumerate(found_entries, start=1):
            if found.id == entry_id:
                rank = position
                break

        test = SearchTest(query=query, found=rank is not None, rank=rank, tested_at=utc_now_iso())
        review = entry.review or default_review()
        review.search_tests.append(test)
        self.bank.update_review(entry_id, review)

        logger.log_review_event("search_test", entry_id, {"query": query, "found": test.found, "rank": rank})
        await self._schedule_sync("search_test")
        return test, found_entries

    async def rate_accuracy(
        self,
        entry_id: str,
        accuracy: str,
        notes: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Review:
        """Record a caption accuracy rating.

        Status defaults to flagged for a wrong caption and approved otherwise.
        Existing notes are kept when none are given.
        """
        if accuracy not in ACCURACY_RATINGS:
            raise ValueError(f"accuracy must be one of: {list(ACCURACY_RATINGS)}")
        if status is not None and status not in REVIEW_STATUSES:
            raise ValueError(f"status must be one of: {list(REVIEW_STATUSES)}")

        entry = self._get_entry(entry_id)
        review = entry.review or default_review()
        review.accuracy = accuracy
        review.accuracy_at = utc_now_iso()
        if notes is not None:
            review.notes = notes
        review.status = status or ("flagged" if accuracy == "wrong" else "approved")
        self.bank.update_review(entry_id, review)

        logger.log_review_event("rate_accuracy", entry_id, {"accuracy": accuracy, "status": review.status})
        await self._schedule_sync("rate_accuracy")
        return review

    async def set_blacklisted(self, entry_id: str, blacklisted: bool) -> bool:
        """Exclude (or re-include) an entry from bank search results."""
        self._get_entry(entry_id)
        self.bank.set_blacklisted(entry_id, blacklisted)

        logger.log_review_event("blacklist", entry_id, {"blacklisted": blacklisted})
        await self._schedule_sync("blacklist")
        return blacklisted

    def next_entry(self, after: Optional[str] = None) -> Tuple[Optional[BankEntry], int]:
        """Next pending, unrated entry and how many remain after it.

        With `after`, returns the entry following that id in review order; an
        unknown or last id starts over from the first one.
        """
        entries = self.bank.list_entries(status="pending", accuracy="unrated", limit=NEXT_ENTRY_WINDOW).entries
        if not entries:
            return None, 0

        position = 0
        if after:
            for i, entry in enumerate(entries):
                if entry.id == after and i < len(entries) - 1:
                    position = i + 1
                    break

        return entries[position], len(entries) - 1

    async def drain(self) -> None:
        """Wait for queued syncs to finish."""
        await self.dispatcher.drain()
