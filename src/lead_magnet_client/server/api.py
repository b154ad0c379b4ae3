from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, File, Form, UploadFile

from lead_magnet_client.client import DataClient
from lead_magnet_client.exceptions import FileTooLargeError
from lead_magnet_client.models import (FileInDB, FileUpdate, ContentFileCreate,
                                       PageCreate, PageUpdate, PageFilesSet, PageFileLink,
                                       CustomerCreate, CustomerUpdate, ProfileUpdate)
from .auth import CurrentUser
from .dependencies import get_data_client

Client = Annotated[DataClient, Depends(get_data_client)]

files_router = APIRouter(prefix="/api/files", tags=["Files"])
pages_router = APIRouter(prefix="/api/pages", tags=["Pages"])
page_files_router = APIRouter(prefix="/api/page-files", tags=["Page files"])
leads_router = APIRouter(prefix="/api", tags=["Leads"])
profile_router = APIRouter(prefix="/api/profile", tags=["Profile"])


def file_payload(client: DataClient, file: FileInDB) -> dict:
    data = file.model_dump(mode="json", exclude={"content"})
    links = client.links(file).model_dump(by_alias=True)
    data.update(downloadUrl=links["downloadUrl"], pageUrl=links["pageUrl"])
    return data


# ――― files ――― #

@files_router.post("")
async def upload_file(
    current_user: CurrentUser,
    client: Client,
    file: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
):
    """
    Uploads a file for the current user.
    An identical upload (same name and size) returns the existing file.
    """
    content = None
    if file is not None:
        limit = client.settings.max_size_bytes
        if file.size is not None and file.size > limit:
            raise FileTooLargeError("File size too large")
        # one byte past the limit is enough for validation to reject it
        content = await file.read(limit + 1)
    result = await client.upload_file(
        owner_id=current_user.id,
        original_name=file.filename if file is not None else None,
        content=content,
        name=name,
        description=description,
        mime_type=file.content_type if file is not None else None,
    )
    return {
        "success": True,
        "message": "File already exists" if result.duplicate else "File uploaded successfully",
        "file": client.links(result.file).model_dump(by_alias=True),
    }


@files_router.get("")
async def list_files(current_user: CurrentUser, client: Client):
    files = await client.list_files(current_user.id)
    return {"success": True, "files": [file_payload(client, f) for f in files]}


@files_router.post("/create")
async def create_file(body: ContentFileCreate, current_user: CurrentUser, client: Client):
    file, page = await client.create_file_from_content(
        owner_id=current_user.id,
        content=body.content,
        filename=body.filename,
        file_type=body.file_type,
        title=body.title,
        description=body.description,
    )
    return {
        "success": True,
        "message": "File created successfully",
        "file": file_payload(client, file),
        "page": {"id": page.id, "slug": page.slug, "title": page.title},
    }


@files_router.get("/created")
async def list_created_files(current_user: CurrentUser, client: Client):
    files = await client.list_created_files(current_user.id)
    return {"success": True, "files": [f.model_dump(mode="json") for f in files]}


@files_router.get("/{file_id}")
async def get_file(file_id: int, current_user: CurrentUser, client: Client):
    file = await client.get_file(file_id, current_user.id)
    return {"success": True, "file": file_payload(client, file)}


@files_router.put("/{file_id}")
async def update_file(file_id: int, patch: FileUpdate, current_user: CurrentUser, client: Client):
    file = await client.update_file(file_id, current_user.id, patch)
    return {"success": True, "message": "File updated successfully", "file": file_payload(client, file)}


@files_router.delete("/{file_id}")
async def delete_file(file_id: int, current_user: CurrentUser, client: Client):
    await client.delete_file(file_id, current_user.id)
    return {"success": True, "message": "File deleted successfully"}


# ――― pages ――― #

@pages_router.get("")
async def list_pages(current_user: CurrentUser, client: Client):
    pages = await client.list_pages(current_user.id)
    return {"success": True, "pages": [p.model_dump(mode="json") for p in pages]}


@pages_router.post("")
async def create_page(body: PageCreate, current_user: CurrentUser, client: Client):
    page = await client.create_page(current_user.id, body)
    return {"success": True, "message": "Page created successfully", "page": page.model_dump(mode="json")}


@pages_router.put("/{page_id}")
async def update_page(page_id: int, patch: PageUpdate, current_user: CurrentUser, client: Client):
    page = await client.update_page(page_id, current_user.id, patch)
    return {"success": True, "message": "Page updated successfully", "page": page.model_dump(mode="json")}


@pages_router.delete("/{page_id}")
async def delete_page(page_id: int, current_user: CurrentUser, client: Client):
    await client.delete_page(page_id, current_user.id)
    return {"success": True, "message": "Page deleted successfully"}


# ――― page files ――― #

@page_files_router.get("/{page_id}")
async def list_page_files(page_id: int, current_user: CurrentUser, client: Client):
    links = await client.list_page_files(page_id, current_user.id)
    return {"success": True, "files": [link.model_dump(mode="json") for link in links]}


@page_files_router.post("/{page_id}/files")
async def set_page_files(page_id: int, body: PageFilesSet, current_user: CurrentUser, client: Client):
    links = await client.set_page_files(page_id, current_user.id, body.file_ids)
    return {
        "success": True,
        "message": f"Associated {len(links)} files with the page",
        "files": [link.model_dump(mode="json") for link in links],
    }


@page_files_router.post("/{page_id}/files/{file_id}")
async def add_page_file(
    page_id: int,
    file_id: int,
    current_user: CurrentUser,
    client: Client,
    body: Annotated[PageFileLink | None, Body()] = None,
):
    body = body or PageFileLink()
    link = await client.add_page_file(
        page_id, file_id, current_user.id, position=body.position, is_primary=bool(body.is_primary)
    )
    return {"success": True, "message": "File added to page", "file": link.model_dump(mode="json")}


@page_files_router.put("/{page_id}/files/{file_id}")
async def update_page_file(
    page_id: int, file_id: int, body: PageFileLink, current_user: CurrentUser, client: Client
):
    link = await client.update_page_file(
        page_id, file_id, current_user.id, position=body.position, is_primary=body.is_primary
    )
    return {"success": True, "message": "Page file updated", "file": link.model_dump(mode="json")}


@page_files_router.delete("/{page_id}/files/{file_id}")
async def remove_page_file(page_id: int, file_id: int, current_user: CurrentUser, client: Client):
    await client.remove_page_file(page_id, file_id, current_user.id)
    return {"success": True, "message": "File removed from page"}


# ――― leads / customers ――― #

@leads_router.get("/leads")
async def list_leads(current_user: CurrentUser, client: Client, page_id: Optional[int] = None):
    leads = await client.list_leads(current_user.id, page_id)
    return {"success": True, "leads": [lead.model_dump(mode="json") for lead in leads]}


@leads_router.get("/customers")
async def list_customers(
    current_user: CurrentUser,
    client: Client,
    search: str = "",
    status: str = "",
    page: int = 1,
    limit: int = 10,
):
    result = await client.list_customers(search, status, max(page, 1), max(min(limit, 100), 1))
    return {"success": True, **result.model_dump(mode="json")}


@leads_router.get("/customers/{customer_id}")
async def get_customer(customer_id: int, current_user: CurrentUser, client: Client):
    customer = await client.get_customer(customer_id)
    return {"success": True, "customer": customer.model_dump(mode="json")}


@leads_router.post("/customers", status_code=201)
async def create_customer(body: CustomerCreate, current_user: CurrentUser, client: Client):
    customer = await client.create_customer(body)
    return {
        "success": True,
        "message": "Customer created successfully",
        "customer": customer.model_dump(mode="json"),
    }


@leads_router.put("/customers/{customer_id}")
async def update_customer(customer_id: int, patch: CustomerUpdate, current_user: CurrentUser, client: Client):
    customer = await client.update_customer(customer_id, patch)
    return {
        "success": True,
        "message": "Customer updated successfully",
        "customer": customer.model_dump(mode="json"),
    }


@leads_router.delete("/customers/{customer_id}")
async def delete_customer(customer_id: int, current_user: CurrentUser, client: Client):
    await client.delete_customer(customer_id)
    return {"success": True, "message": "Customer deleted successfully"}


# ――― profile ――― #

@profile_router.get("/me")
async def get_profile(current_user: CurrentUser, client: Client):
    profile = await client.get_profile(current_user.id)
    return {"success": True, "data": profile.model_dump(mode="json")}


@profile_router.put("/me")
async def update_profile(patch: ProfileUpdate, current_user: CurrentUser, client: Client):
    profile = await client.update_profile(current_user.id, patch)
    return {"success": True, "message": "Profile updated successfully", "data": profile.model_dump(mode="json")}
