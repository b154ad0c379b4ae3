from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends, Response

from lead_magnet_client.client import DataClient
from lead_magnet_client.models import AnalyticsEvent, LeadSubmission
from .dependencies import client_meta, get_data_client

Client = Annotated[DataClient, Depends(get_data_client)]
Meta = Annotated[dict, Depends(client_meta)]

router = APIRouter(tags=["Public"])


@router.get("/download/{slug}")
async def download(slug: str, client: Client, meta: Meta):
    file, data = await client.download(slug, **meta)
    return Response(
        content=data,
        media_type=file.mime_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file.name)}"},
    )


@router.get("/api/p/{slug}")
async def public_page(slug: str, client: Client, meta: Meta):
    page = await client.get_public_page(slug, **meta)
    data = page.model_dump(mode="json", exclude={"owner_id", "file"})
    if page.file is not None and page.file.is_active:
        data["file"] = {
            "name": page.file.name,
            "description": page.file.description,
            "size": page.file.size_bytes,
            "mimeType": page.file.mime_type,
            "downloadSlug": page.file.download_slug,
        }
    return {"success": True, "page": data}


@router.post("/download-page/{slug}/submit")
async def submit_lead(slug: str, body: LeadSubmission, client: Client, meta: Meta):
    result = await client.submit_lead(slug, body, **meta)
    return {
        "success": True,
        "message": "Thank you! Your download will start shortly.",
        "downloadUrl": result.download_url,
        "redirectUrl": result.redirect_url,
    }


@router.post("/api/analytics/track")
async def track(body: AnalyticsEvent, client: Client, meta: Meta):
    event = body.model_copy(update={
        "user_agent": body.user_agent or meta["user_agent"],
        "ip_address": body.ip_address or meta["ip_address"],
    })
    await client.track_event(event)
    return {"success": True, "message": "Event tracked"}
