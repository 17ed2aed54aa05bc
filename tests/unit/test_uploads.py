import io
import threading
from unittest.mock import patch

import pytest
from starlette.datastructures import Headers, UploadFile

from errors import NotFound, ValidationError
from main import _read_upload
from uploads import FileStore, is_allowed_type


@pytest.mark.parametrize(
    "content_type,allowed",
    [
        ("image/png", True),
        ("image/jpeg", True),
        ("application/pdf", True),
        ("application/vnd.ms-powerpoint", True),
        ("application/vnd.openxmlformats-officedocument.presentationml.presentation", True),
        ("text/plain", False),
        ("application/zip", False),
        (None, False),
    ],
)
def test_allowed_types(content_type, allowed):
    assert is_allowed_type(content_type) is allowed


def test_save_names_file_by_timestamp_and_keeps_extension(tmp_path):
    store = FileStore(str(tmp_path / "uploads"))

    stored = store.save("Resume.PDF", "application/pdf", b"%PDF")

    assert stored.filename.endswith(".pdf")
    assert stored.filename[:-4].isdigit()
    assert stored.url == f"/uploads/{stored.filename}"
    assert stored.is_pdf and not stored.is_powerpoint
    assert (tmp_path / "uploads" / stored.filename).read_bytes() == b"%PDF"


def test_same_millisecond_uploads_do_not_collide(tmp_path):
    store = FileStore(str(tmp_path))
    first = store.save("a.png", "image/png", b"1")
    second = store.save("b.png", "image/png", b"2")
    assert first.filename != second.filename


def test_missing_file_rejected(tmp_path):
    store = FileStore(str(tmp_path))
    with pytest.raises(ValidationError, match="No image file uploaded"):
        store.save(None, None, None)


def test_wrong_type_rejected(tmp_path):
    store = FileStore(str(tmp_path))
    with pytest.raises(ValidationError):
        store.save("notes.txt", "text/plain", b"hello")


def test_size_limit(tmp_path):
    store = FileStore(str(tmp_path), max_bytes=4)
    with pytest.raises(ValidationError):
        store.save("big.png", "image/png", b"12345")


def test_resolve_stored_file(tmp_path):
    store = FileStore(str(tmp_path))
    stored = store.save("a.pdf", "application/pdf", b"%PDF")
    assert store.resolve(stored.filename).read_bytes() == b"%PDF"


def test_resolve_missing_or_outside_root(tmp_path):
    (tmp_path / "secret.txt").write_text("nope")
    store = FileStore(str(tmp_path / "uploads"))
    store.save("a.png", "image/png", b"1")

    with pytest.raises(NotFound):
        store.resolve("missing.pdf")
    with pytest.raises(NotFound):
        store.resolve("../secret.txt")


def test_concurrent_same_millisecond_uploads_get_distinct_files(tmp_path):
    store = FileStore(str(tmp_path))
    barrier = threading.Barrier(2)
    saved = []

    def upload(data):
        barrier.wait()
        saved.append(store.save("pic.png", "image/png", data))

    with patch("uploads.time.time", return_value=1000.0):
        threads = [threading.Thread(target=upload, args=(data,)) for data in (b"first", b"second")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    assert sorted(s.filename for s in saved) == ["1000000.png", "1000001.png"]
    assert sorted(p.read_bytes() for p in tmp_path.iterdir()) == [b"first", b"second"]


@pytest.mark.asyncio
async def test_upload_read_stops_just_past_the_limit(tmp_path):
    upload = UploadFile(
        file=io.BytesIO(b"x" * 1000),
        filename="big.png",
        headers=Headers({"content-type": "image/png"}),
    )

    name, content_type, data = await _read_upload(upload, 10)

    assert (name, content_type) == ("big.png", "image/png")
    assert len(data) == 11
    with pytest.raises(ValidationError, match="File too large"):
        FileStore(str(tmp_path), max_bytes=10).save(name, content_type, data)


@pytest.mark.asyncio
async def test_upload_read_without_file():
    assert await _read_upload(None, 10) == (None, None, None)
