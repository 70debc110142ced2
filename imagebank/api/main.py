"""
HTTP surface: image search, plan execution and the bank review dashboard API.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..bank.store import ImageBankStore
from ..bank.types import BankEntry, Review
from ..core.config import (
    BANK_MIRROR_IMAGES,
    OLLAMA_HOST,
    SYNC_QUEUE_SIZE,
    VERSION,
    VISION_MODEL,
    debug_enabled,
    get_embedding_provider,
    get_object_storage,
    get_providers,
    get_query_normalizer,
)
from ..core.review import EntryNotFoundError, ReviewWorkflow, default_review
from ..core.tasks import BackgroundDispatcher
from ..media.analyzer import OllamaImageAnalyzer
from ..media.client import MediaClient
from ..media.providers import download_image
from ..media.types import ImagePlan, ImageSearchOptions
from ..util.logging import logger
from ..vector.embeddings import as_embed_fn
from .schemas import (
    AccuracyRequest,
    AccuracyResponse,
    BlacklistRequest,
    BlacklistResponse,
    EntryDetail,
    EntryListResponse,
    EntrySummary,
    ErrorResponse,
    HealthResponse,
    ImageResultModel,
    ImageSearchResponse,
    NextEntryResponse,
    PlanItemRequest,
    PlanResponse,
    RefreshResponse,
    ReviewModel,
    SearchTestHit,
    SearchTestModel,
    SearchTestRequest,
    SearchTestResponse,
    SelectionModel,
    StatsResponse,
    validate_orientation,
)

LIST_STATUSES = ("all", "pending", "approved", "flagged")
LIST_ACCURACIES = ("all", "unrated", "accurate", "partial", "wrong")
LIST_SORTS = ("oldest", "newest", "worst-searchability")

# Lazily built singletons; tests replace the getters via dependency_overrides
_store: Optional[ImageBankStore] = None
_store_lock = asyncio.Lock()
_media_client: Optional[MediaClient] = None
_workflow: Optional[ReviewWorkflow] = None
_sync_dispatcher = BackgroundDispatcher("bank-sync", SYNC_QUEUE_SIZE)


def build_store() -> ImageBankStore:
    """Wire the bank from configuration; the index is sized to the embedder."""
    provider = get_embedding_provider()
    return ImageBankStore(
        storage=get_object_storage(),
        embed=as_embed_fn(provider),
        dimension=provider.get_dimension(),
        analyze=OllamaImageAnalyzer(VISION_MODEL, host=OLLAMA_HOST),
        download=download_image if BANK_MIRROR_IMAGES else None,
    )


async def get_store() -> Optional[ImageBankStore]:
    """Loaded bank, or None when it cannot be brought up."""
    global _store
    if _store is not None:
        return _store

    async with _store_lock:
        if _store is None:
            try:
                # Model-backed embedders may block while reporting their dimension
                store = await asyncio.to_thread(build_store)
                await store.load()
            except Exception as e:
                logger.log_bank_operation("init", "failed", {"error": str(e)}, level=logging.ERROR)
                return None
            _store = store
    return _store


async def require_store(store: Optional[ImageBankStore] = Depends(get_store)) -> ImageBankStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Image bank not available")
    return store


async def get_media_client(store: Optional[ImageBankStore] = Depends(get_store)) -> MediaClient:
    global _media_client
    if _media_client is None or _media_client.bank is not store:
        previous = _media_client
        _media_client = MediaClient(get_providers(), bank=store, normalizer=get_query_normalizer())
        if previous is not None:
            await _retire_media_client(previous)
    return _media_client


async def _retire_media_client(client: MediaClient) -> None:
    """Finish a client's queued bank writes and stop its worker."""
    try:
        await client.flush()
    except Exception as e:
        logger.log_task_failure("media_client_flush", e)
    await client.dispatcher.close()


def get_review_workflow(store: ImageBankStore = Depends(require_store)) -> ReviewWorkflow:
    global _workflow
    if _workflow is None or _workflow.bank is not store:
        _workflow = ReviewWorkflow(store, _sync_dispatcher)
    return _workflow


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield

    # Persist whatever the request handlers left queued
    if _media_client is not None:
        await _retire_media_client(_media_client)
    await _sync_dispatcher.close()


app = FastAPI(
    title="Image Bank API",
    version=VERSION,
    description="Semantic image bank with stock-photo provider fallback",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests as 400 rather than FastAPI's default 422."""
    messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="Invalid request", detail="; ".join(messages)).model_dump(),
    )


@app.get("/health", response_model=HealthResponse)
async def health_check_endpoint(store: Optional[ImageBankStore] = Depends(get_store)):
    """Check bank and provider availability."""
    providers = sorted(get_providers())
    if store is None:
        return HealthResponse(
            status="degraded", version=VERSION, bank_state="unavailable",
            entries=0, vectors=0, providers=providers,
        )

    return HealthResponse(
        status="healthy",
        version=VERSION,
        bank_state=store.state.value,
        entries=len(store.entries),
        vectors=store.size,
        providers=providers,
    )


@app.get("/images/search", response_model=ImageSearchResponse)
async def search_images_endpoint(
    q: str = Query(..., min_length=1),
    provider: str = "unsplash",
    orientation: Optional[str] = None,
    count: int = Query(5, ge=1, le=30),
    client: MediaClient = Depends(get_media_client),
):
    """Bank-first image search for a single query."""
    try:
        validate_orientation(orientation)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    results = await client.search(ImageSearchOptions(query=q, provider=provider, orientation=orientation, count=count))
    return ImageSearchResponse(
        query=q,
        results=[_image_result(r) for r in results],
    )


@app.post("/images/plan", response_model=PlanResponse)
async def execute_plan_endpoint(
    items: List[PlanItemRequest] = Body(...),
    client: MediaClient = Depends(get_media_client),
):
    """Fill a batch of image slots, deduplicated across the plan."""
    plan = [ImagePlan(**item.model_dump()) for item in items]
    selections = await client.execute_plan(plan)
    return PlanResponse(selections=[
        SelectionModel(
            block_id=s.block_id,
            category=s.category,
            placement=s.placement,
            image={
                "url": s.image.url,
                "alt": s.image.alt,
                "provider": s.image.provider,
                "provider_id": s.image.provider_id,
            },
        )
        for s in selections
    ])


def _image_result(result) -> ImageResultModel:
    attribution = result.attribution
    return ImageResultModel(
        id=result.id,
        title=result.title,
        description=result.description,
        preview_url=result.preview_url,
        display_url=result.display_url,
        width=result.width,
        height=result.height,
        provider=result.provider,
        attribution={
            "name": attribution.name,
            "source_url": attribution.source_url,
            "url": attribution.url,
        } if attribution else None,
    )


# Review dashboard

review_router = APIRouter(prefix="/review", tags=["review"])


def _review_model(review: Optional[Review]) -> ReviewModel:
    review = review or default_review()
    return ReviewModel(
        accuracy=review.accuracy,
        accuracy_at=review.accuracy_at,
        search_tests=[_search_test_model(t) for t in review.search_tests],
        status=review.status,
        notes=review.notes,
    )


def _search_test_model(test) -> SearchTestModel:
    return SearchTestModel(query=test.query, found=test.found, rank=test.rank, tested_at=test.tested_at)


def _entry_summary(store: ImageBankStore, entry: BankEntry) -> EntrySummary:
    review = entry.review or default_review()
    return EntrySummary(
        id=entry.id,
        preview_url=store.get_image_url(entry, "preview"),
        display_url=store.get_image_url(entry, "display"),
        caption=entry.metadata.caption,
        subjects=entry.metadata.subjects,
        style=entry.metadata.style,
        status=review.status,
        accuracy=review.accuracy,
        search_tests=[_search_test_model(t) for t in review.search_tests],
        blacklisted=entry.blacklisted,
        created_at=entry.created_at,
    )


def _entry_detail(store: ImageBankStore, entry: BankEntry) -> EntryDetail:
    metadata = entry.metadata
    return EntryDetail(
        id=entry.id,
        preview_url=store.get_image_url(entry, "preview"),
        display_url=store.get_image_url(entry, "display"),
        caption=metadata.caption,
        subjects=metadata.subjects,
        style=metadata.style,
        colors={"dominant": metadata.colors.dominant, "mood": metadata.colors.mood},
        mood=metadata.mood,
        context=metadata.context,
        composition=metadata.composition,
        lighting=metadata.lighting,
        queries=entry.queries,
        review=_review_model(entry.review),
        blacklisted=entry.blacklisted,
        created_at=entry.created_at,
    )


def _entry_or_404(store: ImageBankStore, entry_id: str) -> BankEntry:
    entry = store.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


@review_router.get("/entries", response_model=EntryListResponse)
def list_entries_endpoint(
    status: str = "all",
    accuracy: str = "all",
    sort: str = "oldest",
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: ImageBankStore = Depends(require_store),
):
    """List entries for review with filters and pagination."""
    if status not in LIST_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of: {list(LIST_STATUSES)}")
    if accuracy not in LIST_ACCURACIES:
        raise HTTPException(status_code=400, detail=f"accuracy must be one of: {list(LIST_ACCURACIES)}")
    if sort not in LIST_SORTS:
        raise HTTPException(status_code=400, detail=f"sort must be one of: {list(LIST_SORTS)}")

    result = store.list_entries(status=status, accuracy=accuracy, sort=sort, limit=limit, offset=offset)
    return EntryListResponse(
        entries=[_entry_summary(store, e) for e in result.entries],
        total=result.total,
    )


@review_router.get("/entries/{entry_id}", response_model=EntryDetail)
def get_entry_endpoint(entry_id: str, store: ImageBankStore = Depends(require_store)):
    """Get one entry with its full analysis and review state."""
    return _entry_detail(store, _entry_or_404(store, entry_id))


@review_router.post("/entries/{entry_id}/search", response_model=SearchTestResponse)
async def search_test_endpoint(
    entry_id: str,
    request: SearchTestRequest,
    store: ImageBankStore = Depends(require_store),
    workflow: ReviewWorkflow = Depends(get_review_workflow),
):
    """Run a search test and record the entry's rank."""
    try:
        test, found = await workflow.record_search_test(entry_id, request.query)
    except EntryNotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")

    return SearchTestResponse(
        test=_search_test_model(test),
        results=[
            SearchTestHit(id=e.id, preview_url=store.get_image_url(e, "preview"), caption=e.metadata.caption)
            for e in found[:5]
        ],
    )


@review_router.post("/entries/{entry_id}/accuracy", response_model=AccuracyResponse)
async def rate_accuracy_endpoint(
    entry_id: str,
    request: AccuracyRequest,
    workflow: ReviewWorkflow = Depends(get_review_workflow),
):
    """Submit a caption accuracy rating."""
    try:
        review = await workflow.rate_accuracy(entry_id, request.accuracy, request.notes, request.status)
    except EntryNotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AccuracyResponse(success=True, review=_review_model(review))


@review_router.post("/entries/{entry_id}/blacklist", response_model=BlacklistResponse)
async def blacklist_endpoint(
    entry_id: str,
    request: BlacklistRequest,
    workflow: ReviewWorkflow = Depends(get_review_workflow),
):
    """Exclude an entry from bank search results (or restore it)."""
    try:
        blacklisted = await workflow.set_blacklisted(entry_id, request.blacklisted)
    except EntryNotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")

    return BlacklistResponse(success=True, blacklisted=blacklisted)


@review_router.get("/stats", response_model=StatsResponse)
def stats_endpoint(store: ImageBankStore = Depends(require_store)):
    """Dashboard counters."""
    return StatsResponse(**store.get_stats())


@review_router.post("/refresh", response_model=RefreshResponse)
async def refresh_endpoint(store: ImageBankStore = Depends(require_store)):
    """Reload the bank from storage."""
    try:
        await store.load(force=True)
    except Exception as e:
        logger.log_bank_operation("refresh", "failed", {"error": str(e)}, level=logging.ERROR)
        raise HTTPException(status_code=503, detail="Image bank reload failed")

    return RefreshResponse(success=True, total=len(store.entries))


@review_router.get("/next", response_model=NextEntryResponse)
def next_entry_endpoint(
    after: Optional[str] = None,
    store: ImageBankStore = Depends(require_store),
    workflow: ReviewWorkflow = Depends(get_review_workflow),
):
    """Next pending, unrated entry to review."""
    entry, remaining = workflow.next_entry(after)
    if entry is None:
        return NextEntryResponse(entry=None, remaining=0)
    return NextEntryResponse(entry=_entry_detail(store, entry), remaining=remaining)


app.include_router(review_router)
