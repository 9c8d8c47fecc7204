"""Offer-letter routes.

POST /offer/generate-offer              -- render, store and email a letter
GET  /offer/{recipient_id}/letter       -- stream the stored letter PDF
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import get_artifact_store, get_pipeline, get_recipient_repository
from app.core.errors import ArtifactNotFound, RecipientNotFound
from app.db.repositories import RecipientRepository
from app.letters.artifact_store import ArtifactStore
from app.letters.pipeline import OfferLetterPipeline, RenderRequest, suggested_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/offer", tags=["offers"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class GenerateOfferBody(BaseModel):
    # Missing fields are reported by the pipeline's own validation.
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    email: str | None = None
    name: str | None = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/generate-offer", summary="Generate and email an offer letter")
def generate_offer(
    body: GenerateOfferBody,
    pipeline: OfferLetterPipeline = Depends(get_pipeline),
):
    request = RenderRequest.from_trigger(body.user_id, body.email, body.name)
    result = pipeline.run(request)
    return JSONResponse(status_code=result.status_code, content={"message": result.message})


@router.get("/{recipient_id}/letter", summary="Fetch the stored offer letter PDF")
def get_letter(
    recipient_id: str,
    download: bool = False,
    recipients: RecipientRepository = Depends(get_recipient_repository),
    store: ArtifactStore = Depends(get_artifact_store),
):
    recipient = recipients.find_recipient(recipient_id)
    if recipient is None:
        raise RecipientNotFound(f"Recipient {recipient_id} not found")

    handle = store.handle_for(recipient)
    if handle is None:
        raise ArtifactNotFound(f"No offer letter stored for recipient {recipient_id}")
    content = store.retrieve(handle)

    disposition = "attachment" if download else "inline"
    filename = suggested_filename(recipient.name)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'{disposition}; filename="{filename}"'},
    )
