"""Content administration router.

Lists the content ids known to the store and removes content, dropping the
rows from the content table and the vectors from the index so the two stay
aligned.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from services.conversation.app.store import ContentStore
from services.retrieval.app.faiss_store import FaissVectorIndex
from shared.logger import get_logger
from shared.models import (
    ContentIdsResponse,
    DeleteContentRequest,
    DeleteContentResponse,
)

from ..deps import get_content_store, get_vector_index

router = APIRouter(prefix="/content", tags=["content"])
logger = get_logger(__name__)


@router.get("/ids", response_model=ContentIdsResponse)
async def content_ids(
    store: ContentStore = Depends(get_content_store),
) -> ContentIdsResponse:
    return ContentIdsResponse(ids=await store.retrieve_all_content_entries())


@router.post("/delete", response_model=DeleteContentResponse)
async def delete_content(
    req: DeleteContentRequest,
    store: ContentStore = Depends(get_content_store),
    index: FaissVectorIndex = Depends(get_vector_index),
) -> DeleteContentResponse:
    deleted = await store.delete_rows_by_keys(req.ids)
    removed = index.remove(req.ids)
    logger.info(
        "Deleted %d content rows and %d vectors for %d ids",
        deleted,
        removed,
        len(req.ids),
    )
    return DeleteContentResponse(deleted=deleted)
