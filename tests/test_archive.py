import asyncio
import json
import logging
import os
import zipfile

import pytest

from txti_backend import archive
from txti_backend.exceptions import ArchiveFormatError
from txti_backend.models import ImageItem, TextItem

from tests.conftest import PNG_BYTES


def _write_images(tmp_path, count):
    paths = {}
    for i in range(count):
        path = tmp_path / "src" / f"img{i}.png"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(PNG_BYTES + bytes([i]))
        paths[f"img{i}.png"] = str(path)
    return paths


def test_round_trip_content_and_assets(tmp_path):
    content = [
        TextItem(val="Hello"),
        ImageItem(src="img0.png", width=240),
        TextItem(val="between"),
        ImageItem(src="img0.png"),
        ImageItem(src="img1.png"),
    ]
    assets = _write_images(tmp_path, 2)
    out = tmp_path / "doc.txti"

    written = asyncio.run(archive.write_archive(content, assets, out))
    assert sorted(written) == ["img0.png", "img1.png"]

    read = asyncio.run(archive.read_structured_content(out))
    assert read.content == content
    assert sorted(read.asset_names) == ["img0.png", "img1.png"]

    extracted = asyncio.run(archive.extract_assets(out, tmp_path / "dest"))
    for name, source in assets.items():
        with open(extracted[name], "rb") as got, open(source, "rb") as want:
            assert got.read() == want.read()


def test_archive_layout_on_disk(tmp_path):
    out = tmp_path / "doc.txti"
    asyncio.run(archive.write_archive([TextItem(val="x")], _write_images(tmp_path, 1), out))
    with zipfile.ZipFile(out) as zf:
        names = set(zf.namelist())
        payload = json.loads(zf.read("content.json"))
    assert names == {"content.json", "assets/img0.png"}
    assert payload == {"content": [{"type": "text", "val": "x"}]}


def test_missing_asset_source_is_skipped_with_warning(tmp_path, caplog):
    assets = _write_images(tmp_path, 1)
    assets["gone.png"] = str(tmp_path / "nowhere" / "gone.png")
    out = tmp_path / "doc.txti"

    with caplog.at_level(logging.WARNING, logger="txti_backend.archive"):
        written = asyncio.run(archive.write_archive([ImageItem(src="gone.png")], assets, out))

    assert written == ["img0.png"]
    assert "gone.png" in caplog.text
    read = asyncio.run(archive.read_structured_content(out))
    assert read.asset_names == ["img0.png"]


def test_unknown_metadata_round_trips(tmp_path):
    out = tmp_path / "doc.txti"
    with zipfile.ZipFile(out, "w") as zf:
        zf.writestr("content.json", json.dumps({"content": [], "version": 3, "author": "me"}))

    read = asyncio.run(archive.read_structured_content(out))
    assert read.metadata == {"version": 3, "author": "me"}

    copy = tmp_path / "copy.txti"
    asyncio.run(archive.write_archive(read.content, {}, copy, metadata=read.metadata))
    with zipfile.ZipFile(copy) as zf:
        assert json.loads(zf.read("content.json")) == {"version": 3, "author": "me", "content": []}


def test_bare_list_payload_is_accepted(tmp_path):
    out = tmp_path / "old.txti"
    with zipfile.ZipFile(out, "w") as zf:
        zf.writestr("content.json", json.dumps([{"type": "text", "val": "legacy"}]))
    read = asyncio.run(archive.read_structured_content(out))
    assert read.content == [TextItem(val="legacy")]


def test_not_a_zip_raises_format_error(tmp_path):
    bogus = tmp_path / "bogus.txti"
    bogus.write_text("plain text, not a zip")
    with pytest.raises(ArchiveFormatError):
        asyncio.run(archive.read_structured_content(bogus))


def test_missing_content_entry_raises_format_error(tmp_path):
    out = tmp_path / "empty.txti"
    with zipfile.ZipFile(out, "w") as zf:
        zf.writestr("assets/a.png", PNG_BYTES)
    with pytest.raises(ArchiveFormatError, match="content.json"):
        asyncio.run(archive.read_structured_content(out))


@pytest.mark.parametrize("payload", ["{not json", json.dumps({"content": [{"type": "video"}]}), json.dumps({"x": 1})])
def test_unparsable_content_raises_format_error(tmp_path, payload):
    out = tmp_path / "bad.txti"
    with zipfile.ZipFile(out, "w") as zf:
        zf.writestr("content.json", payload)
    with pytest.raises(ArchiveFormatError):
        asyncio.run(archive.read_structured_content(out))


def test_missing_file_raises_oserror(tmp_path):
    with pytest.raises(OSError):
        asyncio.run(archive.read_structured_content(tmp_path / "absent.txti"))


def test_unsafe_asset_entries_are_ignored(tmp_path):
    out = tmp_path / "evil.txti"
    with zipfile.ZipFile(out, "w") as zf:
        zf.writestr("content.json", json.dumps({"content": []}))
        zf.writestr("assets/../escape.png", PNG_BYTES)
        zf.writestr("assets/nested/deep.png", PNG_BYTES)
        zf.writestr("assets/ok.png", PNG_BYTES)

    read = asyncio.run(archive.read_structured_content(out))
    assert read.asset_names == ["ok.png"]

    extracted = asyncio.run(archive.extract_assets(out, tmp_path / "dest"))
    assert list(extracted) == ["ok.png"]
    assert not (tmp_path / "escape.png").exists()


def test_failed_write_leaves_previous_file_untouched(tmp_path, monkeypatch):
    out = tmp_path / "doc.txti"
    asyncio.run(archive.write_archive([TextItem(val="original")], {}, out))
    before = out.read_bytes()

    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(archive.os, "replace", boom)
    with pytest.raises(OSError):
        asyncio.run(archive.write_archive([TextItem(val="new")], {}, out))
    monkeypatch.undo()

    assert out.read_bytes() == before
    assert os.listdir(tmp_path) == ["doc.txti"]


def test_one_failed_asset_does_not_stop_the_others(tmp_path, monkeypatch, caplog):
    out = tmp_path / "doc.txti"
    asyncio.run(archive.write_archive([], _write_images(tmp_path, 3), out))
    real_extract = archive._extract_one

    def flaky_extract(path, member, dest):
        if member.endswith("img1.png"):
            raise OSError("no space left on device")
        real_extract(path, member, dest)

    monkeypatch.setattr(archive, "_extract_one", flaky_extract)
    with caplog.at_level(logging.WARNING, logger="txti_backend.archive"):
        extracted = asyncio.run(archive.extract_assets(out, tmp_path / "dest"))

    assert sorted(extracted) == ["img0.png", "img2.png"]
    assert (tmp_path / "dest" / "img2.png").read_bytes() == PNG_BYTES + bytes([2])
    assert "img1.png" in caplog.text
    assert "no space left on device" in caplog.text


def test_extract_from_non_zip_raises_format_error(tmp_path):
    bogus = tmp_path / "bogus.txti"
    bogus.write_text("plain text, not a zip")
    with pytest.raises(ArchiveFormatError):
        asyncio.run(archive.extract_assets(bogus, tmp_path / "dest"))
