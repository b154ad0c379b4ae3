import json
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from sqlalchemy.ext.asyncio import AsyncEngine

from lead_magnet_client.repositories import (StorageRepository,
                                             FileRepository,
                                             PageRepository,
                                             LeadRepository,
                                             AnalyticsRepository,
                                             UserRepository,
                                             )
from lead_magnet_client.config import IngestionConfig
from lead_magnet_client.db import FileORM, PageORM, UserORM
from lead_magnet_client.ingestion import (InFlightRegistry,
                                          IngestionOrchestrator,
                                          IngestionResult,
                                          UploadRequest,
                                          )
from lead_magnet_client.models import (FileInDB, FileLinks, FileUpdate, CreatedFileSummary,
                                       PageCreate, PageUpdate, PageInDB, PageFileInDB,
                                       LeadSubmission, LeadInDB, LeadResult, CustomerPage,
                                       CustomerInDB, CustomerCreate, CustomerUpdate,
                                       AnalyticsEvent, UserProfile, ProfileUpdate,
                                       )
from lead_magnet_client.exceptions import (DatabaseError, StorageError, BlobNotFoundError,
                                           FileRecordNotFoundError, PageNotFoundError,
                                           PermissionDeniedError, ValidationError,
                                           InvalidContentError, ConflictError,
                                           CustomerNotFoundError, NotFoundError,
                                           )
from lead_magnet_client.utils.slugs import new_download_slug, page_slug

logger = logging.getLogger(__name__)

# file_type -> (extension, mime type)
CREATABLE_TYPES = {
    "txt": ("txt", "text/plain"),
    "json": ("json", "application/json"),
    "csv": ("csv", "text/csv"),
    "html": ("html", "text/html"),
    "xml": ("xml", "application/xml"),
    "md": ("md", "text/markdown"),
    "markdown": ("md", "text/markdown"),
}

SLUG_ATTEMPTS = 5


class DataClient:
    """
    Single entry point for the business logic.
    """

    def __init__(
        self,
        engine: AsyncEngine | None,
        file_repo: FileRepository,
        storage: StorageRepository,
        page_repo: PageRepository | None = None,
        lead_repo: LeadRepository | None = None,
        analytics_repo: AnalyticsRepository | None = None,
        user_repo: UserRepository | None = None,
        registry: InFlightRegistry | None = None,
        ingestion: IngestionConfig | None = None,
    ):
        self._engine = engine
        self.files = file_repo
        self.storage = storage
        self.pages = page_repo
        self.leads = lead_repo
        self.analytics = analytics_repo
        self.user_repo = user_repo
        self.settings = ingestion or IngestionConfig()
        self.registry = registry or InFlightRegistry(
            stale_after=self.settings.stale_after_seconds,
            ttl=self.settings.ttl_seconds,
        )
        self.ingestor = IngestionOrchestrator(
            files=self.files,
            storage=self.storage,
            registry=self.registry,
            settings=self.settings,
            slug_factory=self._new_download_slug,
        )

    async def aclose(self):
        if self._engine is not None:
            await self._engine.dispose()

    async def check_connections(self) -> dict[str, str]:
        """
        Checks that the database and the blob storage are reachable.
        Returns a dict of statuses.
        """
        statuses = {}

        try:
            await self.files.check_connection()
            statuses["postgres"] = "ok"
        except DatabaseError as e:
            statuses["postgres"] = f"failed: {e}"

        try:
            await self.storage.check_connection()
            statuses["storage"] = "ok"
        except StorageError as e:
            statuses["storage"] = f"failed: {e}"

        return statuses

    # ――― links ――― #

    def download_url(self, download_slug: str) -> str:
        return f"{self.settings.base_url}/download/{download_slug}"

    def page_url(self, download_slug: str) -> str:
        return f"{self.settings.base_url}/download-page/{self.settings.page_template}?file={download_slug}"

    def links(self, file: FileInDB) -> FileLinks:
        return FileLinks(
            id=file.id,
            name=file.name,
            download_slug=file.download_slug,
            download_url=self.download_url(file.download_slug),
            page_url=self.page_url(file.download_slug),
        )

    # ――― atomic high-level ops ――― #

    async def upload_file(
        self,
        owner_id: int,
        original_name: Optional[str],
        content: Optional[bytes],
        name: Optional[str] = None,
        description: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> IngestionResult:
        """
        Ingests an uploaded file exactly once per (owner, original name, size).

        - A second identical upload returns the existing record; no blob is written.
        - An identical upload still in flight raises ProcessingInProgressError.
        - Any failure removes the written blob before the error propagates.
        """
        return await self.ingestor.ingest(UploadRequest(
            owner_id=owner_id,
            original_name=original_name,
            content=content,
            display_name=name,
            description=description,
            mime_type=mime_type,
        ))

    async def create_file_from_content(
        self,
        owner_id: int,
        content: str,
        filename: str,
        file_type: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> tuple[FileInDB, PageInDB]:
        """
        Generates a file from text content and wraps it in a default page.
        """
        if not content or not filename or not file_type:
            raise ValidationError("Content, filename, and fileType are required")
        entry = CREATABLE_TYPES.get(file_type.lower())
        if entry is None:
            raise InvalidContentError("Unsupported file type")
        ext, mime_type = entry
        if ext == "json":
            try:
                json.loads(content)
            except ValueError as e:
                raise InvalidContentError("Invalid JSON format") from e

        final_name = filename if filename.endswith(f".{ext}") else f"{filename}.{ext}"
        data = content.encode("utf-8")

        storage_key = await self.storage.write(data, final_name, mime_type)
        try:
            file = await self.files.save(FileORM(
                owner_id=owner_id,
                name=final_name,
                original_name=final_name,
                storage_key=storage_key,
                mime_type=mime_type,
                size_bytes=len(data),
                download_slug=await self._new_download_slug(),
                is_created=True,
                content=content if len(data) <= self.settings.inline_content_max_bytes else None,
            ))
            page = await self.create_page(owner_id, PageCreate(
                title=title or f"Download {final_name}",
                description=description or f"Created file: {final_name}",
                file_id=file.id,
            ))
        except BaseException:
            await self.storage.remove(storage_key)
            raise
        logger.info(f"File created: {final_name} by user {owner_id}")
        return file, page

    async def list_files(self, owner_id: int) -> list[FileInDB]:
        logger.info(f"Getting files for user {owner_id}")
        return await self.files.list_for_owner(owner_id)

    async def list_created_files(self, owner_id: int) -> list[CreatedFileSummary]:
        return await self.files.list_created_with_views(owner_id)

    async def get_file(self, file_id: int, owner_id: int) -> FileInDB:
        file = await self.files.get(file_id, owner_id)
        if file is None:
            raise FileRecordNotFoundError("File not found")
        return file

    async def update_file(self, file_id: int, owner_id: int, patch: FileUpdate) -> FileInDB:
        values = patch.model_dump(exclude_none=True)
        if not values.get("name"):
            values.pop("name", None)
        file = await self.files.update(file_id, owner_id, values)
        if file is None:
            raise FileRecordNotFoundError("File not found")
        return file

    async def delete_file(self, file_id: int, owner_id: int):
        file = await self.get_file(file_id, owner_id)
        await self.files.delete(file.id)
        # best effort, the record is already gone
        await self.storage.remove(file.storage_key)
        logger.info(f"Deleted file {file_id} for user {owner_id}")

    async def download(
        self,
        download_slug: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> tuple[FileInDB, bytes]:
        """
        Returns the record and its bytes, counting the download.
        """
        file = await self.files.get_by_slug(download_slug)
        if file is None or not file.is_active:
            raise FileRecordNotFoundError("File not found or no longer available")

        if file.storage_key:
            data = await self.storage.read(file.storage_key)
        elif file.content is not None:
            data = file.content.encode("utf-8")
        else:
            raise BlobNotFoundError("File content is missing")

        downloads = await self.files.increment_downloads(file.id)
        await self.analytics.record(
            owner_id=file.owner_id,
            event="download",
            file_id=file.id,
            data={"slug": download_slug},
            user_agent=user_agent,
            ip_address=ip_address,
        )
        return file.model_copy(update={"downloads": downloads}), data

    # ――― pages ――― #

    async def create_page(self, owner_id: int, page: PageCreate) -> PageInDB:
        if not page.title:
            raise ValidationError("Title is required")
        if page.file_id is not None:
            await self.get_file(page.file_id, owner_id)
        slug = await self._unique_slug(lambda: page_slug(page.title), self.pages.slug_exists)
        created = await self.pages.create(PageORM(
            owner_id=owner_id,
            title=page.title,
            description=page.description,
            content=page.content,
            slug=slug,
            template=page.template or self.settings.page_template,
            file_id=page.file_id,
            settings={"theme": "xiyi", "layout": "default", "require_email": page.require_email},
            is_active=True,
        ))
        logger.info(f"Page created: {page.title} ({slug}) by user {owner_id}")
        return created

    async def list_pages(self, owner_id: int) -> list[PageInDB]:
        return await self.pages.list_for_owner(owner_id)

    async def get_page(self, page_id: int, owner_id: int) -> PageInDB:
        page = await self.pages.get(page_id)
        if page is None:
            raise PageNotFoundError("Page not found")
        if page.owner_id != owner_id:
            raise PermissionDeniedError("Not allowed to access this page")
        return page

    async def update_page(self, page_id: int, owner_id: int, patch: PageUpdate) -> PageInDB:
        await self.get_page(page_id, owner_id)
        values = patch.model_dump(exclude_unset=True)
        for key in ("title", "description"):
            if not values.get(key):
                values.pop(key, None)
        if "file_id" in values:
            if values["file_id"]:
                await self.get_file(values["file_id"], owner_id)
            else:
                values["file_id"] = None
        if values.get("settings") is None:
            values.pop("settings", None)
        if values.get("is_active") is None:
            values.pop("is_active", None)
        return await self.pages.update(page_id, values)

    async def delete_page(self, page_id: int, owner_id: int):
        page = await self.get_page(page_id, owner_id)
        await self.pages.delete(page_id)
        logger.info(f"Page deleted: {page.title} by user {owner_id}")

    async def get_public_page(
        self,
        slug: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> PageInDB:
        page = await self.pages.get_by_slug(slug)
        if page is None or not page.is_active:
            raise PageNotFoundError("Page not found")
        await self.track_event(AnalyticsEvent(
            page_id=page.id, event="view", user_agent=user_agent, ip_address=ip_address,
        ))
        return page

    # ――― page ↔ file links ――― #

    async def list_page_files(self, page_id: int, owner_id: int) -> list[PageFileInDB]:
        await self.get_page(page_id, owner_id)
        return await self.pages.list_page_files(page_id)

    async def set_page_files(self, page_id: int, owner_id: int, file_ids: list[int]) -> list[PageFileInDB]:
        if not file_ids:
            raise ValidationError("Provide a list of file ids")
        await self.get_page(page_id, owner_id)
        owned = await self.files.list_owned(owner_id, file_ids)
        if len({f.id for f in owned}) != len(set(file_ids)):
            raise ValidationError("Some files do not exist or are not accessible")
        links = await self.pages.replace_page_files(page_id, file_ids)
        logger.info(f"Associated {len(file_ids)} files with page {page_id} for user {owner_id}")
        return links

    async def add_page_file(
        self,
        page_id: int,
        file_id: int,
        owner_id: int,
        position: Optional[int] = None,
        is_primary: bool = False,
    ) -> PageFileInDB:
        await self.get_page(page_id, owner_id)
        if not await self.files.list_owned(owner_id, [file_id]):
            raise FileRecordNotFoundError("File not found")
        if await self.pages.get_page_file(page_id, file_id):
            raise ConflictError("File is already attached to this page")
        link = await self.pages.add_page_file(page_id, file_id, position, is_primary)
        logger.info(f"Added file {file_id} to page {page_id} for user {owner_id}")
        return link

    async def update_page_file(
        self,
        page_id: int,
        file_id: int,
        owner_id: int,
        position: Optional[int] = None,
        is_primary: Optional[bool] = None,
    ) -> PageFileInDB:
        await self.get_page(page_id, owner_id)
        link = await self.pages.update_page_file(page_id, file_id, position, is_primary)
        if link is None:
            raise FileRecordNotFoundError("File is not attached to this page")
        return link

    async def remove_page_file(self, page_id: int, file_id: int, owner_id: int):
        await self.get_page(page_id, owner_id)
        if not await self.pages.remove_page_file(page_id, file_id):
            raise FileRecordNotFoundError("File is not attached to this page")
        logger.info(f"Removed file {file_id} from page {page_id} for user {owner_id}")

    # ――― leads ――― #

    async def submit_lead(
        self,
        slug: str,
        submission: LeadSubmission,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> LeadResult:
        """
        Records the visitor as customer and lead, then releases the download link.
        """
        page = await self.pages.get_by_slug(slug)
        if page is None or not page.is_active:
            raise PageNotFoundError("Page not found")
        file = await self._page_download_file(page)
        email = str(submission.email).lower()

        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        await self.leads.upsert_customer(
            email, submission.name, f'[{stamp}] Submitted from download page "{page.title}"'
        )
        lead, created = await self.leads.upsert_lead(page.id, email, submission.name)
        await self.analytics.record(
            owner_id=page.owner_id,
            event="lead",
            page_id=page.id,
            file_id=file.id,
            data={"email": email, "new": created},
            user_agent=user_agent,
            ip_address=ip_address,
        )
        logger.info(f"Lead {lead.id} ({email}) submitted from download page: {slug}")
        return LeadResult(
            download_url=self.download_url(file.download_slug),
            redirect_url=(
                f"/download-success.html?file={quote(file.name)}&title={quote(page.title)}"
            ),
            lead_created=created,
        )

    async def _page_download_file(self, page: PageInDB) -> FileInDB:
        if page.file is not None and page.file.is_active:
            return page.file
        links = await self.pages.list_page_files(page.id)
        active = [link for link in links if link.file.is_active]
        for link in sorted(active, key=lambda link: not link.is_primary):
            return link.file
        raise FileRecordNotFoundError("No file is attached to this page")

    async def list_leads(self, owner_id: int, page_id: Optional[int] = None) -> list[LeadInDB]:
        return await self.leads.list_leads(owner_id, page_id)

    async def list_customers(
        self, search: str = "", status: str = "", page: int = 1, limit: int = 10
    ) -> CustomerPage:
        return await self.leads.list_customers(search, status, page, limit)

    async def get_customer(self, customer_id: int) -> CustomerInDB:
        customer = await self.leads.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError("Customer not found")
        return customer

    async def create_customer(self, data: CustomerCreate) -> CustomerInDB:
        values = data.model_dump()
        values["email"] = values["email"].lower()
        if await self.leads.get_customer_by_email(values["email"]):
            raise ConflictError("Email is already in use")
        customer = await self.leads.create_customer(values)
        logger.info(f"Created customer {customer.id} <{customer.email}>")
        return customer

    async def update_customer(self, customer_id: int, patch: CustomerUpdate) -> CustomerInDB:
        """
        Applies the non-empty fields of the patch.
        Changing the email to one another customer uses raises ConflictError.
        """
        current = await self.get_customer(customer_id)
        values = patch.model_dump(exclude_none=True)
        if not values.get("name"):
            values.pop("name", None)
        if "email" in values:
            values["email"] = values["email"].lower()
            if values["email"] != current.email and await self.leads.get_customer_by_email(values["email"]):
                raise ConflictError("Email is already in use")
        customer = await self.leads.update_customer(customer_id, values)
        if customer is None:
            raise CustomerNotFoundError("Customer not found")
        return customer

    async def delete_customer(self, customer_id: int):
        if not await self.leads.delete_customer(customer_id):
            raise CustomerNotFoundError("Customer not found")
        logger.info(f"Deleted customer {customer_id}")

    # ――― analytics ――― #

    async def track_event(self, event: AnalyticsEvent):
        page = await self.pages.get(event.page_id)
        if page is None:
            raise PageNotFoundError("Page not found")
        await self.analytics.record(
            owner_id=page.owner_id,
            event=event.event,
            page_id=page.id,
            data=event.data,
            user_agent=event.user_agent,
            ip_address=event.ip_address,
        )
        if event.event == "view":
            await self.pages.increment_views(page.id)

    async def count_events(self, owner_id: int, event: Optional[str] = None) -> int:
        return await self.analytics.count(owner_id, event)

    # ――― users ――― #

    async def create_user(self, email: str, name: Optional[str] = None) -> UserORM:
        return await self.user_repo.create_user(email, name)

    async def get_user_by_id(self, user_id: int) -> Optional[UserORM]:
        return await self.user_repo.get_by_id(user_id)

    async def get_profile(self, user_id: int) -> UserProfile:
        profile = await self.user_repo.get_profile(user_id)
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    async def update_profile(self, user_id: int, patch: ProfileUpdate) -> UserProfile:
        values = patch.model_dump(exclude_unset=True)
        if not values.get("name"):
            values.pop("name", None)
        if values.get("profile_public") is None:
            values.pop("profile_public", None)
        profile = await self.user_repo.update_profile(user_id, values)
        if profile is None:
            raise NotFoundError("User not found")
        return profile

    # ――― helpers ――― #

    async def _new_download_slug(self) -> str:
        return await self._unique_slug(new_download_slug, self.files.slug_exists)

    @staticmethod
    async def _unique_slug(factory, exists) -> str:
        for _ in range(SLUG_ATTEMPTS):
            slug = factory()
            if not await exists(slug):
                return slug
        raise DatabaseError("Could not allocate a unique slug")
