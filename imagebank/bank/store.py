"""
Image bank store: entry metadata plus a text-embedding vector index,
persisted as two objects (bank.json, bank.index) in object storage.

Each entry owns several vectors: its caption, the search queries that surfaced
it and the analyzer's expansion terms. Every entry records the slots of those
vectors, so the slot map is rebuilt from bank.json fields on load rather than
from array order. The index is append-only: slots are never reused.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..core.config import BANK_MIN_SCORE, EMBED_DIM, get_vector_index
from ..core.storage import ObjectStorage
from ..media.types import ImageSearchResult, orientation_of
from ..util.logging import logger
from ..vector.embeddings import EmbedFn
from ..vector.index import IVectorIndex, normalize_vector
from ..vector.types import IndexCorruptedError
from .types import (
    Attribution,
    BankEntry,
    BankHit,
    BankListResult,
    BankSearchResult,
    ImageMetadata,
    Review,
    VectorSlots,
    VECTOR_WEIGHTS,
    compute_searchability,
    utc_now_iso,
)

AnalyzeFn = Callable[[str], Awaitable[ImageMetadata]]
DownloadFn = Callable[[str], Awaitable[bytes]]

BANK_DATA_KEY = "bank.json"
BANK_INDEX_KEY = "bank.index"
BANK_DATA_VERSION = 3  # v3: explicit slots per entry
MAX_EXPANSIONS = 10
SEARCH_OVERFETCH = 10  # several vectors per entry compete for the top k

STATUS_ORDER = {"pending": 0, "flagged": 1, "approved": 2}


class BankState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


class BankNotLoadedError(RuntimeError):
    """Raised when the bank is used before load() completed."""
    pass


class BankCorruptedError(Exception):
    """Raised when bank.json and bank.index cannot be reconciled."""
    pass


class ImageBankStore:
    """Durable, queryable catalog of bank entries with vector search."""

    def __init__(
        self,
        storage: ObjectStorage,
        embed: EmbedFn,
        analyze: AnalyzeFn,
        index: Optional[IVectorIndex] = None,
        min_score: float = BANK_MIN_SCORE,
        dimension: int = EMBED_DIM,
        download: Optional[DownloadFn] = None,
    ):
        """
        Args:
            storage: Object storage holding bank.json and bank.index
            embed: Async text embedding function
            analyze: Async vision analysis of an image URL
            index: Vector index (default: configured provider)
            min_score: Minimum similarity for a search candidate
            dimension: Embedding dimension
            download: Optional image fetcher; when set, renditions are mirrored into storage
        """
        self.storage = storage
        self.embed = embed
        self.analyze = analyze
        self.download = download
        self.min_score = min_score
        self.index = index if index is not None else get_vector_index(dimension)

        self.entries: Dict[str, BankEntry] = {}
        self.slot_to_entry: Dict[int, str] = {}
        self.slot_kinds: Dict[int, str] = {}
        self.dirty = False
        self.state = BankState.UNLOADED

        self._load_lock = asyncio.Lock()
        self._sync_lock = asyncio.Lock()
        self._in_flight: Set[str] = set()

    def _require_ready(self) -> None:
        if self.state is not BankState.READY:
            raise BankNotLoadedError(f"Image bank is {self.state.value}; call load() first")

    @property
    def size(self) -> int:
        return self.index.size()

    async def load(self, force: bool = False) -> None:
        """Load entries and index from storage. Idempotent once ready unless forced."""
        async with self._load_lock:
            if self.state is BankState.READY and not force:
                return

            previous_state = self.state
            self.state = BankState.LOADING
            logger.log_bank_operation("load", "started", {"prefix": self.storage.prefix, "force": force})

            try:
                data = await self.storage.download_json(BANK_DATA_KEY)
                blob = await self.storage.download_buffer(BANK_INDEX_KEY)
                entries, slot_map, slot_kinds, index, repaired = self._rebuild(data, blob)
            except Exception as e:
                self.state = previous_state
                logger.log_bank_operation("load", "failed", {"error": str(e)})
                raise

            self.entries = entries
            self.slot_to_entry = slot_map
            self.slot_kinds = slot_kinds
            self.index = index
            self.dirty = repaired
            self.state = BankState.READY

            logger.log_bank_operation("load", "success", {
                "entries": len(entries),
                "vectors": index.size(),
                "mapped_slots": len(slot_map),
            })

    def _rebuild(self, data: Optional[Dict[str, Any]], blob: Optional[bytes]):
        """Reconcile persisted entries with the persisted index into fresh state."""
        index = type(self.index)(self.index.dimension)
        if blob:
            try:
                index.deserialize(blob)
            except IndexCorruptedError as e:
                raise BankCorruptedError(f"Cannot restore {BANK_INDEX_KEY}: {e}") from e
        else:
            logger.log_bank_operation("load", "new_index", {"message": "Starting with empty index"})

        raw_entries = (data or {}).get("entries", [])
        entries: Dict[str, BankEntry] = {}
        slot_map: Dict[int, str] = {}
        slot_kinds: Dict[int, str] = {}
        repaired = False

        for raw in raw_entries:
            try:
                entry = BankEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                raise BankCorruptedError(f"Malformed entry in {BANK_DATA_KEY}: {e}") from e

            if entry.id in entries:
                raise BankCorruptedError(f"Duplicate entry id {entry.id}")
            entries[entry.id] = entry

            if entry.vectors is None:
                continue  # unindexed: reviewable but never matched

            slots = entry.vectors.all_slots()
            if not blob and slots:
                # Metadata survived without its index; keep the entry but stop matching it
                logger.log_bank_operation("load", "unindexed", {"entry_id": entry.id}, level=logging.WARNING)
                entry.vectors = None
                repaired = True
                continue

            for slot, kind in entry.vectors.labeled():
                if slot < 0 or slot >= index.size():
                    raise BankCorruptedError(
                        f"Entry {entry.id} references slot {slot} but index holds {index.size()} vectors"
                    )
                if slot in slot_map:
                    raise BankCorruptedError(
                        f"Slot {slot} claimed by both {slot_map[slot]} and {entry.id}"
                    )
                slot_map[slot] = entry.id
                slot_kinds[slot] = kind

        orphans = index.size() - len(slot_map)
        if orphans > 0:
            logger.log_bank_operation("load", "orphan_vectors", {"count": orphans}, level=logging.WARNING)

        return entries, slot_map, slot_kinds, index, repaired

    async def store(self, image: ImageSearchResult, query: str) -> Optional[BankEntry]:
        """Analyze, embed and index a provider image. Returns None when it could not be cached."""
        self._require_ready()
        entry_id = BankEntry.make_id(image.provider, image.id)

        existing = self.entries.get(entry_id)
        if existing is not None:
            logger.log_bank_operation("store", "exists", {"entry_id": entry_id}, level=logging.DEBUG)
            return existing
        if entry_id in self._in_flight:
            return None

        self._in_flight.add(entry_id)
        try:
            return await self._store_new(entry_id, image, query)
        finally:
            self._in_flight.discard(entry_id)

    async def _store_new(self, entry_id: str, image: ImageSearchResult, query: str) -> Optional[BankEntry]:
        preview_key = None
        display_key = None
        if self.download is not None:
            preview_key = f"images/{image.provider}/{image.id}/preview.jpg"
            display_key = f"images/{image.provider}/{image.id}/display.jpg"
            try:
                preview, display = await asyncio.gather(
                    self.download(image.preview_url),
                    self.download(image.display_url),
                )
                await asyncio.gather(
                    self.storage.upload_buffer(preview_key, preview, "image/jpeg"),
                    self.storage.upload_buffer(display_key, display, "image/jpeg"),
                )
            except Exception as e:
                self._log_store_skipped(entry_id, "mirror", e)
                return None

        try:
            metadata = await self.analyze(image.display_url)
        except Exception as e:
            self._log_store_skipped(entry_id, "analyze", e)
            return None

        texts = self._vector_texts(metadata, query)
        try:
            vectors = await asyncio.gather(*[self.embed(text) for _, text in texts])
        except Exception as e:
            self._log_store_skipped(entry_id, "embed", e)
            return None

        # Validate every vector up front so a bad one never leaves orphans behind
        try:
            rows = [normalize_vector(vector, self.index.dimension) for vector in vectors]
        except ValueError as e:
            self._log_store_skipped(entry_id, "index", e)
            return None

        # A forced reload may have brought this entry in while we were awaiting
        if entry_id in self.entries:
            return self.entries[entry_id]

        slots = VectorSlots(caption=self.index.size())
        for (kind, _), row in zip(texts, rows):
            slot = self.index.size()
            self.index.add(row)
            self.slot_to_entry[slot] = entry_id
            self.slot_kinds[slot] = kind
            if kind == "query":
                slots.queries.append(slot)
            elif kind == "expansion":
                slots.expansions.append(slot)

        entry = BankEntry(
            id=entry_id,
            provider=image.provider,
            provider_id=image.id,
            title=image.title,
            description=image.description,
            width=image.width,
            height=image.height,
            preview_url=image.preview_url,
            display_url=image.display_url,
            preview_key=preview_key,
            display_key=display_key,
            attribution=image.attribution or Attribution(name="Unknown", source_url=image.display_url),
            metadata=metadata,
            vectors=slots,
            queries=[query] if query.strip() else [],
            created_at=utc_now_iso(),
        )

        self.entries[entry_id] = entry
        self.dirty = True

        logger.log_bank_operation("store", "success", {
            "entry_id": entry_id,
            "slot": slots.caption,
            "vectors": len(rows),
            "caption": metadata.caption[:50],
        })
        return entry

    @staticmethod
    def _vector_texts(metadata: ImageMetadata, query: str) -> List[Tuple[str, str]]:
        """(kind, text) pairs to embed for a new entry, caption first."""
        texts = [("caption", metadata.caption)]
        if query.strip():
            texts.append(("query", query.strip()))

        seen = {metadata.caption.strip().lower(), query.strip().lower()}
        expansions = 0
        for term in metadata.expansions:
            term = term.strip()
            if not term or term.lower() in seen:
                continue
            seen.add(term.lower())
            texts.append(("expansion", term))
            expansions += 1
            if expansions >= MAX_EXPANSIONS:
                break
        return texts

    def _log_store_skipped(self, entry_id: str, stage: str, error: Exception) -> None:
        logger.log_bank_operation("store", "skipped", {
            "entry_id": entry_id,
            "stage": stage,
            "error": str(error)[:200],
        }, level=logging.WARNING)

    async def search(self, query: str, limit: int = 5, orientation: Optional[str] = None) -> BankSearchResult:
        """Return up to `limit` entries scoring at least min_score, best first.

        An entry's score is its best weighted match over all of its vectors;
        the min_score floor applies to the raw similarity.
        """
        self._require_ready()

        total = self.index.size()
        if total == 0 or limit <= 0:
            return BankSearchResult(results=[], top_score=0.0)

        vector = await self.embed(query)

        # Over-fetch to absorb sibling vectors and candidates dropped by the filters below
        hits = self.index.search(vector, min(limit * SEARCH_OVERFETCH, total))

        best: Dict[str, BankHit] = {}
        for hit in hits:
            if hit.score < self.min_score:
                continue
            entry_id = self.slot_to_entry.get(hit.slot)
            entry = self.entries.get(entry_id) if entry_id else None
            if entry is None or entry.blacklisted:
                continue
            if orientation and orientation_of(entry.width, entry.height) != orientation:
                continue

            kind = self.slot_kinds.get(hit.slot, "caption")
            score = hit.score * VECTOR_WEIGHTS[kind]
            current = best.get(entry.id)
            if current is None or score > current.score:
                best[entry.id] = BankHit(entry=entry, score=score, match_type=kind)

        results = sorted(best.values(), key=lambda h: h.score, reverse=True)[:limit]
        top_score = results[0].score if results else 0.0
        logger.log_bank_operation("search", "success", {
            "query": query[:80],
            "orientation": orientation,
            "found": len(results),
            "top_score": round(top_score, 4),
            "match_type": results[0].match_type if results else None,
        }, level=logging.DEBUG)
        return BankSearchResult(results=results, top_score=top_score)

    async def sync(self) -> None:
        """Persist entries and index when dirty. Errors propagate."""
        self._require_ready()

        async with self._sync_lock:
            if not self.dirty:
                logger.log_bank_operation("sync", "skipped", {"reason": "not_dirty"}, level=logging.DEBUG)
                return

            # Snapshot before awaiting so concurrent stores re-mark dirty
            payload = {
                "version": BANK_DATA_VERSION,
                "entries": [entry.to_dict() for entry in self.entries.values()],
            }
            blob = self.index.serialize()
            self.dirty = False

            try:
                # Index first: an index ahead of bank.json only leaves orphan vectors
                await self.storage.upload_buffer(BANK_INDEX_KEY, blob, "application/octet-stream")
                await self.storage.upload_json(BANK_DATA_KEY, payload)
            except BaseException as e:
                # Cancelled mid-upload counts as a failed sync too
                self.dirty = True
                logger.log_bank_operation("sync", "failed", {"error": str(e) or type(e).__name__})
                raise

            logger.log_bank_operation("sync", "success", {
                "entries": len(payload["entries"]),
                "vectors": self.index.size(),
            })

    def get_image_url(self, entry: BankEntry, size: str = "display") -> Optional[str]:
        """Public URL of a mirrored rendition, falling back to the provider URL."""
        key = entry.preview_key if size == "preview" else entry.display_key
        if key:
            return self.storage.public_url(key)
        return entry.preview_url if size == "preview" else entry.display_url

    def to_search_result(self, entry: BankEntry) -> ImageSearchResult:
        return ImageSearchResult(
            id=entry.provider_id,
            title=entry.title,
            description=entry.description,
            preview_url=self.get_image_url(entry, "preview") or "",
            display_url=self.get_image_url(entry, "display") or "",
            width=entry.width,
            height=entry.height,
            provider=entry.provider,
            attribution=entry.attribution,
        )

    # Review overlay

    def get_entry(self, entry_id: str) -> Optional[BankEntry]:
        self._require_ready()
        return self.entries.get(entry_id)

    def list_entries(
        self,
        status: str = "all",
        accuracy: str = "all",
        sort: str = "oldest",
        limit: int = 50,
        offset: int = 0,
    ) -> BankListResult:
        """Filter, sort and paginate entries for review."""
        self._require_ready()
        entries = list(self.entries.values())

        if status != "all":
            entries = [e for e in entries if (e.review.status if e.review else "pending") == status]

        if accuracy == "unrated":
            entries = [e for e in entries if not e.review or e.review.accuracy is None]
        elif accuracy != "all":
            entries = [e for e in entries if e.review and e.review.accuracy == accuracy]

        if sort == "newest":
            entries.sort(key=lambda e: e.created_at, reverse=True)
        elif sort == "worst-searchability":
            def searchability(e: BankEntry) -> float:
                score = compute_searchability(e.review.search_tests if e.review else [])
                return 1.0 if score is None else score  # untested sorts last
            entries.sort(key=searchability)
        else:
            # Oldest first, pending before flagged before approved
            entries.sort(key=lambda e: (STATUS_ORDER[e.review.status if e.review else "pending"], e.created_at))

        total = len(entries)
        return BankListResult(entries=entries[offset:offset + limit], total=total)

    def update_review(self, entry_id: str, review: Review) -> bool:
        self._require_ready()
        entry = self.entries.get(entry_id)
        if entry is None:
            logger.log_bank_operation("review", "not_found", {"entry_id": entry_id}, level=logging.WARNING)
            return False

        entry.review = review
        self.dirty = True
        return True

    def set_blacklisted(self, entry_id: str, blacklisted: bool) -> bool:
        self._require_ready()
        entry = self.entries.get(entry_id)
        if entry is None:
            logger.log_bank_operation("blacklist", "not_found", {"entry_id": entry_id}, level=logging.WARNING)
            return False

        entry.blacklisted = blacklisted
        self.dirty = True
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Review dashboard counters."""
        self._require_ready()

        counts = {"pending": 0, "approved": 0, "flagged": 0}
        accuracy = {"accurate": 0, "partial": 0, "wrong": 0, "unrated": 0}
        total_tests = 0
        score_sum = 0.0
        scored_entries = 0

        for entry in self.entries.values():
            review = entry.review
            counts[review.status if review else "pending"] += 1

            if review and review.accuracy:
                accuracy[review.accuracy] += 1
            else:
                accuracy["unrated"] += 1

            tests = review.search_tests if review else []
            total_tests += len(tests)
            score = compute_searchability(tests)
            if score is not None:
                score_sum += score
                scored_entries += 1

        return {
            "total": len(self.entries),
            "reviewed": len(self.entries) - accuracy["unrated"],
            "pending": counts["pending"],
            "approved": counts["approved"],
            "flagged": counts["flagged"],
            "blacklisted": sum(1 for e in self.entries.values() if e.blacklisted),
            "accuracy": accuracy,
            "searchability": {
                "avg_score": score_sum / scored_entries if scored_entries else None,
                "total_tests": total_tests,
            },
            "vectors": self.index.size(),
        }
