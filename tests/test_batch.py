from __future__ import annotations

import base64
from collections.abc import Callable

import pytest

from gitcontent.errors import FastForwardRejectedError
from gitcontent.hosts import MemoryHost
from gitcontent.retry import RetryPolicy
from gitcontent.schemas import BatchFile, HostProvider, RepositoryIdentity, UploadProgress
from gitcontent.service import ContentStore

IDENTITY = RepositoryIdentity(provider=HostProvider.MEMORY, login="acme", repo="site")


class _ObservingHost(MemoryHost):
    """Records what readers of the branch see while a batch is in flight."""

    def __init__(self) -> None:
        super().__init__()
        self.snapshots: list[dict[str, str]] = []

    def create_tree(self, owner, repo, *, base_tree, entries):
        self.snapshots.append(self.list_files(owner, repo))
        return super().create_tree(owner, repo, base_tree=base_tree, entries=entries)

    def create_commit(self, owner, repo, *, message, tree, parents):
        self.snapshots.append(self.list_files(owner, repo))
        return super().create_commit(owner, repo, message=message, tree=tree, parents=parents)


class _RacingHost(MemoryHost):
    """Runs ``rival`` right before the first ref update lands."""

    def __init__(self) -> None:
        super().__init__()
        self.ref_updates = 0
        self.rival: Callable[[], str] | None = None
        self.rival_commit: str | None = None

    def update_ref(self, owner, repo, branch, sha):
        self.ref_updates += 1
        if self.rival is not None:
            rival, self.rival = self.rival, None
            self.rival_commit = rival()
        super().update_ref(owner, repo, branch, sha)


def _rival_put(host: MemoryHost) -> Callable[[], str]:
    def write() -> str:
        return host.put_contents(
            "acme",
            "site",
            "rival.md",
            content_base64=base64.b64encode(b"rival").decode("ascii"),
            message="Rival write",
            branch="main",
        ).commit_sha

    return write


class _AlwaysRejectingHost(MemoryHost):
    def __init__(self) -> None:
        super().__init__()
        self.ref_updates = 0

    def update_ref(self, owner, repo, branch, sha):
        self.ref_updates += 1
        raise FastForwardRejectedError(422, "Update is not a fast forward")


def _store(host: MemoryHost, *, max_retries: int = 5) -> ContentStore:
    return ContentStore(
        host=host,
        cas_retry_policy=RetryPolicy(max_retries=max_retries, sleep=lambda _: None),
    )


def test_upload_batch_is_one_commit_and_invisible_until_done() -> None:
    host = _ObservingHost()
    head = host.create_repo("acme", "site", files={"index.html": "old"})
    store = _store(host)

    result = store.upload_batch(
        IDENTITY,
        [
            BatchFile(path="slides/w1/index.html", content="<h1>1</h1>"),
            BatchFile(path="slides/w1/style.css", content="h1{}"),
            BatchFile(path="index.html", content="new"),
        ],
    )

    assert result.files_uploaded == 3
    assert host.get_ref("acme", "site", "main") == result.commit_ref
    assert host.commit_parents("acme", "site", result.commit_ref) == (head,)
    for snapshot in host.snapshots:
        assert set(snapshot) == {"index.html"}
    assert host.read_file("acme", "site", "index.html") == b"new"
    assert host.read_file("acme", "site", "slides/w1/style.css") == b"h1{}"


def test_upload_batch_rebuilds_on_fresh_head_after_race() -> None:
    host = _RacingHost()
    host.create_repo("acme", "site", files={"keep.md": "keep"})
    store = _store(host)
    host.rival = lambda: store.upload_batch(
        IDENTITY,
        [BatchFile(path="c.md", content="c"), BatchFile(path="d.md", content="d")],
    ).commit_ref

    result = store.upload_batch(
        IDENTITY,
        [BatchFile(path="a.md", content="a"), BatchFile(path="b.md", content="b")],
    )

    assert host.ref_updates == 3
    assert host.commit_parents("acme", "site", result.commit_ref) == (host.rival_commit,)
    assert host.get_ref("acme", "site", "main") == result.commit_ref
    assert set(host.list_files("acme", "site")) == {"keep.md", "a.md", "b.md", "c.md", "d.md"}
    assert host.blob_requests == 4


def test_upload_batch_creates_one_blob_per_distinct_payload() -> None:
    host = _RacingHost()
    host.create_repo("acme", "site")
    host.rival = _rival_put(host)
    store = _store(host)

    store.upload_batch(
        IDENTITY,
        [
            BatchFile(path="one/logo.svg", content="<svg/>"),
            BatchFile(path="two/logo.svg", content="<svg/>"),
        ],
    )

    assert host.ref_updates == 2
    assert host.blob_requests == 1
    assert host.read_file("acme", "site", "one/logo.svg") == b"<svg/>"
    assert host.read_file("acme", "site", "two/logo.svg") == b"<svg/>"
    assert host.read_file("acme", "site", "rival.md") == b"rival"


def test_upload_batch_gives_up_after_retries() -> None:
    host = _AlwaysRejectingHost()
    head = host.create_repo("acme", "site", files={"a.md": "a"})
    store = _store(host, max_retries=2)

    with pytest.raises(FastForwardRejectedError):
        store.upload_batch(IDENTITY, [BatchFile(path="b.md", content="b")])

    assert host.ref_updates == 3
    assert host.blob_requests == 1
    assert host.get_ref("acme", "site", "main") == head
    assert set(host.list_files("acme", "site")) == {"a.md"}


def test_upload_batch_reports_progress_and_accepts_mappings() -> None:
    host = MemoryHost()
    host.create_repo("acme", "site")
    store = _store(host)
    progress: list[UploadProgress] = []

    result = store.upload_batch(
        IDENTITY,
        [
            {"path": "img/a.png", "content": base64.b64encode(b"\x89a").decode(), "encoding": "base64"},
            {"path": "notes.txt", "content": "hi"},
        ],
        message="Publish",
        on_progress=progress.append,
    )

    assert result.files_uploaded == 2
    assert sorted(item.current for item in progress) == [1, 2]
    assert {item.filename for item in progress} == {"a.png", "notes.txt"}
    assert all(item.total == 2 for item in progress)
    assert host.read_file("acme", "site", "img/a.png") == b"\x89a"


def test_upload_batch_rejects_empty_input() -> None:
    host = MemoryHost()
    host.create_repo("acme", "site")

    with pytest.raises(ValueError, match="No files to upload"):
        _store(host).upload_batch(IDENTITY, [])


def test_upload_batch_invalidates_cached_listing() -> None:
    host = MemoryHost()
    host.create_repo("acme", "site", files={"docs/a.md": "a"})
    store = _store(host)
    assert len(store.list_folder(IDENTITY, "docs")) == 1

    store.upload_batch(IDENTITY, [BatchFile(path="docs/b.md", content="b")])

    assert [entry.name for entry in store.list_folder(IDENTITY, "docs")] == ["a.md", "b.md"]


def test_delete_folder_removes_everything_in_one_commit() -> None:
    host = MemoryHost()
    head = host.create_repo(
        "acme",
        "site",
        files={
            "slides/w1/index.html": "1",
            "slides/w1/img/a.png": b"a",
            "slides/w1/img/deep/b.png": b"b",
            "slides/w2/index.html": "2",
        },
    )
    store = _store(host)
    store.list_folder(IDENTITY, "slides")

    result = store.delete_folder(IDENTITY, "slides/w1")

    assert result.files_deleted == 3
    assert host.commit_parents("acme", "site", result.commit_ref) == (head,)
    assert set(host.list_files("acme", "site")) == {"slides/w2/index.html"}
    assert [entry.name for entry in store.list_folder(IDENTITY, "slides")] == ["w2"]


def test_delete_folder_missing_is_a_no_op() -> None:
    host = MemoryHost()
    head = host.create_repo("acme", "site", files={"a.md": "a"})

    result = _store(host).delete_folder(IDENTITY, "nothing/here")

    assert result.commit_ref is None
    assert result.files_deleted == 0
    assert host.get_ref("acme", "site", "main") == head


def test_copy_folder_reuses_existing_blobs() -> None:
    host = MemoryHost()
    host.create_repo(
        "acme",
        "site",
        files={"templates/base/index.html": "<html/>", "templates/base/css/site.css": "body{}"},
    )
    store = _store(host)

    result = store.copy_folder(IDENTITY, "templates/base", "/courses/intro/")

    assert result.copied == 2
    assert host.blob_requests == 0
    assert host.read_file("acme", "site", "courses/intro/index.html") == b"<html/>"
    assert host.read_file("acme", "site", "courses/intro/css/site.css") == b"body{}"
    assert host.read_file("acme", "site", "templates/base/index.html") == b"<html/>"


def test_copy_folder_missing_source() -> None:
    host = MemoryHost()
    host.create_repo("acme", "site")

    result = _store(host).copy_folder(IDENTITY, "nope", "dest")

    assert result.commit_ref is None
    assert result.copied == 0


def test_upload_batch_into_new_subfolder_refreshes_every_ancestor_listing() -> None:
    host = MemoryHost()
    host.create_repo("acme", "site", files={"a/x.md": "x"})
    store = _store(host)
    assert [entry.name for entry in store.list_folder(IDENTITY, "a")] == ["x.md"]
    root_before = store.list_folder(IDENTITY, "")

    store.upload_batch(IDENTITY, [BatchFile(path="a/new/deep/y.md", content="y")])

    assert [entry.name for entry in store.list_folder(IDENTITY, "a")] == ["new", "x.md"]
    root_after = store.list_folder(IDENTITY, "")
    assert root_after[0].content_hash != root_before[0].content_hash
