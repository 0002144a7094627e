from __future__ import annotations

import base64

import pytest

import gitcontent.validation as validation_module
from gitcontent.config import AppConfig, UploadConfig
from gitcontent.errors import ConflictError, InvalidUploadError, NotFoundError
from gitcontent.hosts import MemoryHost, blob_sha
from gitcontent.retry import RetryPolicy
from gitcontent.schemas import HostProvider, RepositoryIdentity
from gitcontent.service import ContentStore

IDENTITY = RepositoryIdentity(provider=HostProvider.MEMORY, login="acme", repo="content-acme-25w")


class _CountingHost(MemoryHost):
    def __init__(self) -> None:
        super().__init__()
        self.content_reads = 0
        self.put_calls = 0

    def get_contents(self, owner, repo, path, *, ref=None):
        self.content_reads += 1
        return super().get_contents(owner, repo, path, ref=ref)

    def put_contents(self, owner, repo, path, **kwargs):
        self.put_calls += 1
        return super().put_contents(owner, repo, path, **kwargs)


def _store(
    files: dict[str, str | bytes] | None = None,
    *,
    config: AppConfig | None = None,
) -> tuple[ContentStore, _CountingHost]:
    host = _CountingHost()
    host.create_repo(IDENTITY.login, IDENTITY.repo, files=files or {})
    store = ContentStore(
        config=config,
        host=host,
        cas_retry_policy=RetryPolicy(sleep=lambda _: None),
    )
    return store, host


def test_put_then_get_round_trip_and_hash_changes() -> None:
    store, _ = _store()

    first = store.put(IDENTITY, "pages/a.md", "hello")
    content = store.get_content(IDENTITY, "pages/a.md")
    second = store.put(IDENTITY, "pages/a.md", "hello again")

    assert content is not None
    assert content.content == "hello"
    assert content.content_hash == first.content_hash == blob_sha(b"hello")
    assert second.content_hash != first.content_hash
    assert store.get_content(IDENTITY, "pages/a.md").content == "hello again"


def test_get_content_raw_returns_base64_without_line_breaks() -> None:
    payload = bytes(range(256))
    store, _ = _store({"bin/data.bin": payload})

    result = store.get_content(IDENTITY, "bin/data.bin", raw=True)

    assert result is not None
    assert "\n" not in result.content
    assert base64.b64decode(result.content) == payload


def test_get_meta_missing_and_directory_return_none() -> None:
    store, _ = _store({"docs/a.md": "a"})

    assert store.get_meta(IDENTITY, "docs/missing.md") is None
    assert store.get_meta(IDENTITY, "docs") is None
    assert store.get_content(IDENTITY, "docs/missing.md") is None
    meta = store.get_meta(IDENTITY, "docs/a.md")
    assert meta is not None
    assert meta.size == 1


def test_put_with_stale_hash_raises_and_leaves_content() -> None:
    store, host = _store({"a.md": "original"})
    original = store.get_meta(IDENTITY, "a.md")
    store.put(IDENTITY, "a.md", "changed", expected_hash=original.content_hash)

    with pytest.raises(ConflictError, match="modified by someone else"):
        store.put(IDENTITY, "a.md", "lost update", expected_hash=original.content_hash)

    assert host.read_file(IDENTITY.login, IDENTITY.repo, "a.md") == b"changed"


def test_put_with_expected_hash_on_missing_file_conflicts() -> None:
    store, host = _store()

    with pytest.raises(ConflictError):
        store.put(IDENTITY, "new.md", "x", expected_hash="0" * 40)

    assert host.put_calls == 0


def test_put_ignores_stale_cache_for_precondition() -> None:
    store, host = _store({"a.md": "v1"})
    cached = store.get_meta(IDENTITY, "a.md")
    other = ContentStore(host=host)
    other.put(IDENTITY, "a.md", "v2")

    assert store.get_meta(IDENTITY, "a.md").content_hash == cached.content_hash
    with pytest.raises(ConflictError):
        store.put(IDENTITY, "a.md", "v3", expected_hash=cached.content_hash)


def test_reads_are_cached_until_write_invalidates() -> None:
    store, host = _store({"pages/a.md": "one"})

    store.get_content(IDENTITY, "pages/a.md")
    store.get_content(IDENTITY, "pages/a.md")
    store.list_folder(IDENTITY, "pages")
    store.list_folder(IDENTITY, "pages")
    assert host.content_reads == 2

    store.put(IDENTITY, "pages/b.md", "two")
    listing = store.list_folder(IDENTITY, "pages")

    assert [entry.name for entry in listing] == ["a.md", "b.md"]


def test_write_invalidates_every_content_variant() -> None:
    store, _ = _store({"a.md": "one"})
    store.get_content(IDENTITY, "a.md")
    store.get_content(IDENTITY, "a.md", raw=True)
    store.get_meta(IDENTITY, "a.md")

    store.put(IDENTITY, "a.md", "two")

    assert store.get_content(IDENTITY, "a.md").content == "two"
    assert base64.b64decode(store.get_content(IDENTITY, "a.md", raw=True).content) == b"two"
    assert store.get_meta(IDENTITY, "a.md").content_hash == blob_sha(b"two")


def test_images_are_never_cached() -> None:
    store, host = _store({"img/a.png": b"\x89PNG"})

    store.get_meta(IDENTITY, "img/a.png")
    store.get_meta(IDENTITY, "img/a.png")

    assert host.content_reads == 2
    assert len(store.cache) == 0


def test_skip_cache_and_disabled_cache() -> None:
    store, host = _store({"a.md": "one"})
    store.get_content(IDENTITY, "a.md")
    store.get_content(IDENTITY, "a.md", skip_cache=True)
    assert host.content_reads == 2

    config = AppConfig.model_validate({"cache": {"enabled": False}})
    uncached, uncached_host = _store({"a.md": "one"}, config=config)
    uncached.get_content(IDENTITY, "a.md")
    uncached.get_content(IDENTITY, "a.md")
    assert uncached_host.content_reads == 2


def test_list_folder_missing_or_file_returns_empty() -> None:
    store, _ = _store({"a.md": "one"})

    assert store.list_folder(IDENTITY, "missing") == []
    assert store.list_folder(IDENTITY, "a.md") == []


def test_list_folder_returns_independent_copies() -> None:
    store, _ = _store({"docs/a.md": "a"})

    first = store.list_folder(IDENTITY, "docs")
    first.clear()

    assert len(store.list_folder(IDENTITY, "docs")) == 1


def test_exists_for_file_and_folder() -> None:
    store, _ = _store({"docs/a.md": "a"})

    assert store.exists(IDENTITY, "docs/a.md") is True
    assert store.exists(IDENTITY, "docs") is True
    assert store.exists(IDENTITY, "nope") is False


def test_delete_removes_file_and_reports_missing() -> None:
    store, host = _store({"a.md": "one", "b.md": "two"})
    store.list_folder(IDENTITY, "")

    result = store.delete(IDENTITY, "a.md")

    assert result.commit_ref == host.get_ref(IDENTITY.login, IDENTITY.repo, "main")
    assert [entry.name for entry in store.list_folder(IDENTITY, "")] == ["b.md"]
    with pytest.raises(NotFoundError, match="File not found: a.md"):
        store.delete(IDENTITY, "a.md")


def test_delete_multiple_collects_errors() -> None:
    store, host = _store({"a.md": "1", "b.md": "2"})

    result = store.delete_multiple(IDENTITY, ["a.md", "missing.md", "b.md"])

    assert result.deleted == 2
    assert result.errors == ["missing.md: File not found: missing.md"]
    assert host.list_files(IDENTITY.login, IDENTITY.repo) == {}


def test_upload_small_file_uses_single_write(monkeypatch) -> None:
    monkeypatch.setattr(validation_module.time, "time", lambda: 1000.0)
    store, host = _store()

    result = store.upload(IDENTITY, b"\x89PNG small", "My Photo.PNG", "images/")

    assert result.path == "images/1000000-my-photo.png"
    assert result.content_hash == blob_sha(b"\x89PNG small")
    assert result.url == (
        "https://raw.githubusercontent.com/acme/content-acme-25w/main/images/1000000-my-photo.png"
    )
    assert host.put_calls == 1
    assert host.blob_requests == 0


def test_upload_above_single_write_limit_goes_through_blob(monkeypatch) -> None:
    monkeypatch.setattr(validation_module.time, "time", lambda: 2000.0)
    config = AppConfig(uploads=UploadConfig(single_write_limit_bytes=16))
    store, host = _store(config=config)
    payload = b"x" * 64

    result = store.upload(IDENTITY, payload, "big.pdf", "")

    assert result.path == "2000000-big.pdf"
    assert host.put_calls == 0
    assert host.blob_requests == 1
    assert host.read_file(IDENTITY.login, IDENTITY.repo, result.path) == payload
    assert store.get_large_content(IDENTITY, result.path).content == base64.b64encode(
        payload
    ).decode("ascii")


def test_upload_rejects_invalid_file() -> None:
    store, host = _store()

    with pytest.raises(InvalidUploadError, match="Invalid file type"):
        store.upload(IDENTITY, b"MZ", "tool.exe", "bin")
    with pytest.raises(InvalidUploadError, match="File too large"):
        store.upload(IDENTITY, b"x" * (5 * 1024 * 1024 + 1), "a.png", "img")

    assert host.put_calls == 0
    assert host.list_files(IDENTITY.login, IDENTITY.repo) == {}


def test_get_large_content_missing_returns_none() -> None:
    store, _ = _store()

    assert store.get_large_content(IDENTITY, "nope.bin") is None


def test_find_orphaned_images() -> None:
    store, _ = _store({"img/a.png": b"a", "img/b.png": b"b", "img/readme.md": "x"})

    orphans = store.find_orphaned_images(IDENTITY, "img", '<img src="img/a.png">')

    assert [orphan.path for orphan in orphans] == ["img/b.png"]
    assert orphans[0].url.endswith("/content-acme-25w/main/img/b.png")


def test_string_identity_resolves_through_directory(tmp_path) -> None:
    from gitcontent.identity import IdentityResolver
    from gitcontent.schemas import GitOrganization
    from gitcontent.storage import OrganizationDirectory

    directory = OrganizationDirectory(tmp_path / "orgs.db")
    directory.upsert_organization(GitOrganization(provider=HostProvider.MEMORY, login="acme"))
    host = MemoryHost()
    host.create_repo("acme", "site", files={"a.md": "hi"})
    store = ContentStore(resolver=IdentityResolver(directory), host=host)

    assert store.get_content("acme/site", "a.md").content == "hi"


def test_get_content_decodes_binary_files_lossily() -> None:
    store, _ = _store({"doc.pdf": b"%PDF\xff\xfe\x00"})

    text = store.get_content(IDENTITY, "doc.pdf")
    raw = store.get_content(IDENTITY, "doc.pdf", raw=True)

    assert text is not None
    assert text.content == "%PDF\ufffd\ufffd\x00"
    assert base64.b64decode(raw.content) == b"%PDF\xff\xfe\x00"
