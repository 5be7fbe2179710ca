"""
Mailroom Backend: Signature Route Handlers
============================================

Endpoints:
    GET    /api/signatures/image/{id}               image bytes or 307 redirect
    GET    /api/signatures/package/{package_id}     metadata for a package
    GET    /api/signatures/pickup-event/{event_id}  metadata for a pickup event
    GET    /api/signatures/{id}                     metadata
    DELETE /api/signatures/{id}

Images are immutable once stored, so decoded images are cached for a year.
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mailroom.database import get_db_session
from mailroom.schemas.common import ErrorResponse
from mailroom.schemas.signature import SignatureDeleteResponse, SignatureEnvelope
from mailroom.services import get_signature_service
from mailroom.services.signature_service import SignatureService

router = APIRouter(prefix="/api/signatures", tags=["Signatures"])

NOT_FOUND = {404: {"description": "Signature not found", "model": ErrorResponse}}
IMAGE_CACHE_CONTROL = "public, max-age=31536000"


@router.get(
    "/image/{signature_id}",
    responses={
        200: {"description": "Decoded signature image", "content": {"image/png": {}}},
        307: {"description": "Redirect to the stored image URL"},
        400: {"description": "Stored payload cannot be decoded", "model": ErrorResponse},
        **NOT_FOUND,
    },
    summary="Signature image",
)
async def get_signature_image(
    signature_id: int,
    db: AsyncSession = Depends(get_db_session),
    service: SignatureService = Depends(get_signature_service),
) -> Response:
    image = await service.get_image(db, signature_id)
    if image.redirect_url:
        return RedirectResponse(url=image.redirect_url, status_code=307)
    return Response(
        content=image.content,
        media_type=image.media_type,
        headers={"Cache-Control": IMAGE_CACHE_CONTROL},
    )


@router.get("/package/{package_id}", response_model=SignatureEnvelope, responses=NOT_FOUND)
async def get_signature_for_package(
    package_id: int,
    db: AsyncSession = Depends(get_db_session),
    service: SignatureService = Depends(get_signature_service),
) -> SignatureEnvelope:
    return await service.get_for_package(db, package_id)


@router.get("/pickup-event/{event_id}", response_model=SignatureEnvelope, responses=NOT_FOUND)
async def get_signature_for_pickup_event(
    event_id: int,
    db: AsyncSession = Depends(get_db_session),
    service: SignatureService = Depends(get_signature_service),
) -> SignatureEnvelope:
    """Only available when the database has the pickup event schema."""
    return await service.get_for_pickup_event(db, event_id)


@router.get("/{signature_id}", response_model=SignatureEnvelope, responses=NOT_FOUND)
async def get_signature(
    signature_id: int,
    db: AsyncSession = Depends(get_db_session),
    service: SignatureService = Depends(get_signature_service),
) -> SignatureEnvelope:
    return await service.get_signature(db, signature_id)


@router.delete("/{signature_id}", response_model=SignatureDeleteResponse, responses=NOT_FOUND)
async def delete_signature(
    signature_id: int,
    db: AsyncSession = Depends(get_db_session),
    service: SignatureService = Depends(get_signature_service),
) -> SignatureDeleteResponse:
    return await service.delete_signature(db, signature_id)
