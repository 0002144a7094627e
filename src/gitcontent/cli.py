from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import typer

from gitcontent import AppConfig, ContentStore, load_config
from gitcontent.errors import ContentStoreError
from gitcontent.schemas import BatchFile, GitOrganization, HostProvider
from gitcontent.storage import OrganizationDirectory
from gitcontent.validation import validate_file

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

T = TypeVar("T")

app = typer.Typer(help="Git-hosted content storage CLI")
org_app = typer.Typer(help="Organization directory commands")
app.add_typer(org_app, name="org")

_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    help="Config file path (YAML or JSON). Defaults apply when omitted.",
    exists=True,
    dir_okay=False,
    readable=True,
)
_DB_PATH_OPTION = typer.Option(
    None,
    "--db-path",
    help="Organization directory SQLite path; overrides the config value.",
)


@app.command("ls")
def list_folder(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    path: str = typer.Argument("", help="Folder path inside the repository."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """List a folder."""
    store = _build_store(config_path, db_path)
    entries = _run(lambda: store.list_folder(repo, path))
    for entry in entries:
        suffix = "/" if entry.kind == "dir" else ""
        typer.echo(f"{entry.content_hash[:7]}  {entry.path}{suffix}")
    typer.echo(f"entries={len(entries)}")


@app.command("cat")
def cat_file(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    path: str = typer.Argument(..., help="File path inside the repository."),
    raw: bool = typer.Option(False, "--raw", help="Print base64 instead of UTF-8 text."),
    large: bool = typer.Option(False, "--large", help="Read through the blob endpoint."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """Print a file."""
    store = _build_store(config_path, db_path)
    if large:
        result = _run(lambda: store.get_large_content(repo, path))
    else:
        result = _run(lambda: store.get_content(repo, path, raw=raw, skip_cache=True))

    if result is None:
        typer.echo(f"not found: {path}", err=True)
        raise typer.Exit(code=1)
    typer.echo(result.content)


@app.command("put")
def put_file(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    path: str = typer.Argument(..., help="Destination path inside the repository."),
    source: Path = typer.Option(
        ...,
        "--file",
        help="Local file whose bytes are written.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    expected_hash: str | None = typer.Option(
        None,
        "--expected-hash",
        help="Only write while the stored content hash still equals this value.",
    ),
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """Create or update one file."""
    store = _build_store(config_path, db_path)
    result = _run(
        lambda: store.put(
            repo,
            path,
            source.read_bytes(),
            expected_hash=expected_hash,
            message=message,
        )
    )
    typer.echo(f"content_hash={result.content_hash} commit={result.commit_ref}")


@app.command("upload")
def upload_file(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    source: Path = typer.Argument(
        ...,
        help="Local file to upload.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    folder: str = typer.Option("", "--folder", help="Target folder inside the repository."),
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """Validate and upload an asset under a collision-free name."""
    store = _build_store(config_path, db_path)
    result = _run(
        lambda: store.upload(repo, source.read_bytes(), source.name, folder, message=message)
    )
    typer.echo(f"path={result.path} content_hash={result.content_hash}")
    typer.echo(result.url)


@app.command("push-dir")
def push_directory(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    local_dir: Path = typer.Argument(
        ...,
        help="Local directory uploaded as one commit.",
        exists=True,
        file_okay=False,
        readable=True,
    ),
    prefix: str = typer.Option("", "--prefix", help="Destination folder inside the repository."),
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """Upload every file of a local directory in a single atomic commit."""
    files = _load_batch_files(local_dir, prefix=prefix)
    if not files:
        typer.echo(f"no files found in {local_dir}", err=True)
        raise typer.Exit(code=1)

    store = _build_store(config_path, db_path)
    result = _run(
        lambda: store.upload_batch(
            repo,
            files,
            message=message,
            on_progress=lambda progress: logging.info(
                "blob %d/%d %s", progress.current, progress.total, progress.filename
            ),
        )
    )
    typer.echo(f"commit={result.commit_ref} files={result.files_uploaded}")


@app.command("rm")
def remove_files(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    paths: list[str] = typer.Argument(..., help="File paths to delete."),
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """Delete files one by one, reporting failures at the end."""
    store = _build_store(config_path, db_path)
    result = _run(lambda: store.delete_multiple(repo, paths, message=message))
    for error in result.errors:
        typer.echo(error, err=True)
    typer.echo(f"deleted={result.deleted} errors={len(result.errors)}")
    if result.errors:
        raise typer.Exit(code=1)


@app.command("rm-folder")
def remove_folder(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    path: str = typer.Argument(..., help="Folder path to delete."),
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """Delete a folder and everything under it in one commit."""
    store = _build_store(config_path, db_path)
    result = _run(lambda: store.delete_folder(repo, path, message=message))
    typer.echo(f"commit={result.commit_ref} files_deleted={result.files_deleted}")


@app.command("orphans")
def orphaned_images(
    repo: str = typer.Argument(..., help="Repository as login/repo."),
    images_folder: str = typer.Argument(..., help="Folder holding the images."),
    content_file: Path = typer.Option(
        ...,
        "--content-file",
        help="Local file with the content that references images.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    json_out: bool = typer.Option(False, "--json", help="Print JSON instead of paths."),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """List images that the given content never references."""
    store = _build_store(config_path, db_path)
    content = content_file.read_text(encoding="utf-8")
    orphans = _run(lambda: store.find_orphaned_images(repo, images_folder, content))

    if json_out:
        payload = [orphan.model_dump(mode="json") for orphan in orphans]
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return
    for orphan in orphans:
        typer.echo(orphan.path)
    typer.echo(f"orphans={len(orphans)}")


@app.command("validate")
def validate_upload(
    source: Path = typer.Argument(
        ...,
        help="Local file to check against upload limits.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    config_path: Path | None = _CONFIG_OPTION,
) -> None:
    """Check a file against the upload size and extension rules."""
    config = _load_app_config(config_path)
    result = validate_file(
        source.name,
        source.stat().st_size,
        max_size=config.uploads.max_file_size_bytes,
        allowed_extensions=config.uploads.allowed_extensions,
    )
    if not result.valid:
        typer.echo(result.error, err=True)
        raise typer.Exit(code=1)
    typer.echo("valid")


@org_app.command("add")
def add_organization(
    login: str = typer.Argument(..., help="Organization login on the host."),
    provider: HostProvider = typer.Option(
        HostProvider.GITHUB,
        "--provider",
        help="Git host provider.",
        case_sensitive=False,
    ),
    base_url: str | None = typer.Option(
        None,
        "--base-url",
        help="API base URL for self-hosted providers.",
    ),
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """Register an organization in the directory."""
    directory = _build_directory(config_path, db_path)
    try:
        organization = GitOrganization(provider=provider, login=login, base_url=base_url)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    directory.upsert_organization(organization)
    typer.echo(f"registered {organization.provider}:{organization.login}")


@org_app.command("list")
def list_organizations(
    config_path: Path | None = _CONFIG_OPTION,
    db_path: Path | None = _DB_PATH_OPTION,
) -> None:
    """List registered organizations."""
    directory = _build_directory(config_path, db_path)
    organizations = directory.list_organizations()
    for organization in organizations:
        base_url = organization.base_url or "-"
        typer.echo(f"{organization.provider}\t{organization.login}\t{base_url}")
    typer.echo(f"organizations={len(organizations)}")


def _load_app_config(config_path: Path | None) -> AppConfig:
    if config_path is None:
        return AppConfig()
    try:
        return load_config(config_path)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def _build_directory(config_path: Path | None, db_path: Path | None) -> OrganizationDirectory:
    config = _load_app_config(config_path)
    return OrganizationDirectory(db_path or config.directory_db_path)


def _build_store(config_path: Path | None, db_path: Path | None) -> ContentStore:
    config = _load_app_config(config_path)
    if db_path is not None:
        config = config.model_copy(update={"directory_db_path": str(db_path)})
    return ContentStore.from_config(config)


def _run(operation: Callable[[], T]) -> T:
    try:
        return operation()
    except (ContentStoreError, ValueError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def _load_batch_files(local_dir: Path, *, prefix: str) -> list[BatchFile]:
    clean_prefix = prefix.strip().strip("/")
    files: list[BatchFile] = []
    for path in sorted(local_dir.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(local_dir).as_posix()
        target = f"{clean_prefix}/{relative}" if clean_prefix else relative
        files.append(BatchFile(path=target, content=path.read_bytes()))
    return files
