from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from marketbridge.dependencies import get_image_store
from marketbridge.services.image_store import ImageStore

router = APIRouter(tags=["uploads"])


@router.get("/{name}")
def get_upload(name: str, store: ImageStore = Depends(get_image_store)):
    # resolve() rejects anything outside the filename grammar
    path = store.resolve(name)
    if not store.exists(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")

    return FileResponse(
        path,
        media_type=store.content_type_for(name),
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
