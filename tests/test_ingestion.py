import asyncio

import pytest

from lead_magnet_client.client import DataClient
from lead_magnet_client.exceptions import (
    DatabaseError,
    DisallowedFileTypeError,
    FileTooLargeError,
    NoFileProvidedError,
    ProcessingInProgressError,
    StorageWriteError,
    UnknownIngestionError,
)
from lead_magnet_client.ingestion import IngestionState

pytestmark = pytest.mark.asyncio


async def test_upload_then_duplicate_scenario(data_client: DataClient, owner, blobs):
    """
    A and B share owner, name and size: B echoes A.
    C differs only in size and gets its own record.
    """
    a = await data_client.upload_file(owner.id, "doc.pdf", b"a" * 1024)
    b = await data_client.upload_file(owner.id, "doc.pdf", b"b" * 1024)
    c = await data_client.upload_file(owner.id, "doc.pdf", b"c" * 2048)

    assert not a.duplicate
    assert a.history == [
        IngestionState.RECEIVED,
        IngestionState.ADMITTED,
        IngestionState.DUPLICATE_CHECKED,
        IngestionState.PERSISTED,
        IngestionState.RELEASED,
    ]

    assert b.duplicate
    assert b.file.id == a.file.id
    assert b.file.download_slug == a.file.download_slug
    assert IngestionState.PERSISTED not in b.history
    assert b.state == IngestionState.RELEASED

    assert not c.duplicate
    assert c.file.id not in (a.file.id,)
    assert c.file.download_slug != a.file.download_slug

    files = await data_client.list_files(owner.id)
    assert sorted(f.id for f in files) == sorted([a.file.id, c.file.id])
    # the duplicate never wrote a blob
    assert len(blobs()) == 2
    assert len(data_client.registry) == 0


async def test_upload_record_fields(data_client: DataClient, owner):
    result = await data_client.upload_file(
        owner.id, "guide.pdf", b"%PDF-1.4 test", name="Free guide", description="A guide"
    )
    file = result.file

    assert file.owner_id == owner.id
    assert file.name == "Free guide"
    assert file.original_name == "guide.pdf"
    assert file.description == "A guide"
    assert file.size_bytes == len(b"%PDF-1.4 test")
    assert file.mime_type == "application/pdf"
    assert file.downloads == 0
    assert file.is_active and not file.is_created
    assert file.storage_key.endswith("-guide.pdf")
    assert await data_client.storage.read(file.storage_key) == b"%PDF-1.4 test"

    links = data_client.links(file)
    assert links.download_url == f"http://testserver/download/{file.download_slug}"
    assert links.page_url == f"http://testserver/download-page/xiyi-download?file={file.download_slug}"


async def test_same_name_for_different_owners_is_not_a_duplicate(data_client: DataClient, owner, other_owner):
    first = await data_client.upload_file(owner.id, "doc.pdf", b"x" * 100)
    second = await data_client.upload_file(other_owner.id, "doc.pdf", b"x" * 100)

    assert not second.duplicate
    assert second.file.id != first.file.id


async def test_concurrent_identical_upload_is_rejected(data_client: DataClient, owner, blobs):
    content = b"z" * 1024

    first, second = await asyncio.gather(
        data_client.upload_file(owner.id, "doc.pdf", content),
        data_client.upload_file(owner.id, "doc.pdf", content),
        return_exceptions=True,
    )

    assert not first.duplicate
    assert isinstance(second, ProcessingInProgressError)
    assert second.status_code == 409
    assert second.code == "PROCESSING"

    # once the first request released its entry the next one goes through
    third = await data_client.upload_file(owner.id, "doc.pdf", content)
    assert third.duplicate
    assert third.file.id == first.file.id
    assert len(blobs()) == 1


async def test_rejected_upload_leaves_entry_of_the_winner(data_client: DataClient, owner):
    from lead_magnet_client.ingestion import make_signature

    fingerprint = make_signature(owner.id, "doc.pdf", 10)
    assert data_client.registry.try_admit(fingerprint)

    with pytest.raises(ProcessingInProgressError):
        await data_client.upload_file(owner.id, "doc.pdf", b"0123456789")

    assert fingerprint in data_client.registry
    data_client.registry.release(fingerprint)


async def test_persistence_failure_removes_blob_and_releases_entry(
    data_client: DataClient, owner, blobs, monkeypatch
):
    async def broken_insert(file):
        raise DatabaseError("insert failed")

    monkeypatch.setattr(data_client.files, "create_if_absent", broken_insert)

    with pytest.raises(DatabaseError):
        await data_client.upload_file(owner.id, "doc.pdf", b"a" * 64)

    assert blobs() == []
    assert len(data_client.registry) == 0

    monkeypatch.undo()
    retry = await data_client.upload_file(owner.id, "doc.pdf", b"a" * 64)
    assert not retry.duplicate
    assert len(blobs()) == 1


async def test_unexpected_error_is_wrapped(data_client: DataClient, owner, blobs, monkeypatch):
    async def exploding_insert(file):
        raise RuntimeError("boom")

    monkeypatch.setattr(data_client.files, "create_if_absent", exploding_insert)

    with pytest.raises(UnknownIngestionError) as exc_info:
        await data_client.upload_file(owner.id, "doc.pdf", b"a" * 64)

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert exc_info.value.status_code == 500
    assert blobs() == []
    assert len(data_client.registry) == 0


async def test_storage_failure_releases_entry(data_client: DataClient, owner, monkeypatch):
    async def failing_write(data, suggested_name, content_type=None):
        raise StorageWriteError("disk full")

    monkeypatch.setattr(data_client.storage, "write", failing_write)

    with pytest.raises(StorageWriteError):
        await data_client.upload_file(owner.id, "doc.pdf", b"a" * 64)

    assert len(data_client.registry) == 0
    assert await data_client.list_files(owner.id) == []


async def test_cancelled_upload_cleans_up(data_client: DataClient, owner, blobs, monkeypatch):
    inserting = asyncio.Event()

    async def slow_insert(file):
        inserting.set()
        await asyncio.sleep(30)

    monkeypatch.setattr(data_client.files, "create_if_absent", slow_insert)

    task = asyncio.create_task(data_client.upload_file(owner.id, "doc.pdf", b"a" * 64))
    await inserting.wait()
    assert len(blobs()) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert blobs() == []
    assert len(data_client.registry) == 0


async def test_lost_insert_race_returns_winner(data_client: DataClient, owner, blobs, monkeypatch):
    """
    Another process committed the same upload between our lookup and our
    insert; the unique index turns our insert into a duplicate.
    """
    winner = await data_client.upload_file(owner.id, "doc.pdf", b"w" * 256)

    real_find = data_client.files.find_existing
    calls = []

    async def blind_first_lookup(*args):
        calls.append(args)
        if len(calls) == 1:
            return None
        return await real_find(*args)

    monkeypatch.setattr(data_client.files, "find_existing", blind_first_lookup)

    loser = await data_client.upload_file(owner.id, "doc.pdf", b"l" * 256)

    assert loser.duplicate
    assert loser.file.id == winner.file.id
    assert blobs() == [winner.file.storage_key]
    assert len(await data_client.list_files(owner.id)) == 1


async def test_every_upload_gets_a_fresh_slug(data_client: DataClient, owner):
    results = [
        await data_client.upload_file(owner.id, f"file-{i}.txt", b"x" * (i + 1))
        for i in range(5)
    ]
    slugs = {r.file.download_slug for r in results}
    assert len(slugs) == 5


async def test_download_slug_is_regenerated_on_collision(data_client: DataClient, owner, monkeypatch):
    candidates = iter(["taken", "taken", "fresh"])
    monkeypatch.setattr("lead_magnet_client.client.new_download_slug", lambda: next(candidates))

    first = await data_client.upload_file(owner.id, "a.txt", b"a")
    second = await data_client.upload_file(owner.id, "b.txt", b"b")

    assert first.file.download_slug == "taken"
    assert second.file.download_slug == "fresh"


@pytest.mark.parametrize(
    "name, content, error",
    [
        (None, b"data", NoFileProvidedError),
        ("doc.pdf", None, NoFileProvidedError),
        ("setup.exe", b"MZ", DisallowedFileTypeError),
        ("no_extension", b"data", DisallowedFileTypeError),
    ],
)
async def test_invalid_upload_is_rejected_before_admission(
    data_client: DataClient, owner, blobs, name, content, error
):
    with pytest.raises(error) as exc_info:
        await data_client.upload_file(owner.id, name, content)

    assert exc_info.value.status_code == 400
    assert blobs() == []
    assert len(data_client.registry) == 0


async def test_oversized_upload_is_rejected(data_client: DataClient, owner, blobs, monkeypatch):
    monkeypatch.setattr(data_client.settings, "max_size_bytes", 16)

    with pytest.raises(FileTooLargeError) as exc_info:
        await data_client.upload_file(owner.id, "big.zip", b"x" * 17)

    assert exc_info.value.status_code == 413
    assert blobs() == []

    ok = await data_client.upload_file(owner.id, "small.zip", b"x" * 16)
    assert not ok.duplicate


async def test_extension_check_is_case_insensitive(data_client: DataClient, owner):
    result = await data_client.upload_file(owner.id, "PHOTO.JPG", b"\xff\xd8\xff")
    assert result.file.original_name == "PHOTO.JPG"
