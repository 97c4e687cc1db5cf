from io import BytesIO

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..api.dependencies import get_context
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..schemas.schemas import DocumentRequest
from ..services.context import ServiceContext
from ..services.documents import render_document

router = APIRouter()


@router.post("/")
def generate_document(
    payload: DocumentRequest,
    ctx: ServiceContext = Depends(get_context),
    actor: Actor = Depends(get_current_actor),
) -> StreamingResponse:
    content = render_document(ctx, actor, payload.document_type, payload.deal_id, payload.language)
    filename = f"{payload.document_type}_{payload.deal_id}.pdf"
    return StreamingResponse(
        BytesIO(content),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
