"""Public URL builders for stored content."""

from __future__ import annotations


def get_content_url(login: str, repo: str, path: str) -> str:
    """GitHub Pages URL: ``https://{login}.github.io/{repo}/{path}``."""
    return f"https://{login}.github.io/{repo}/{_clean(path)}"


def get_raw_content_url(login: str, repo: str, path: str, *, branch: str = "main") -> str:
    return f"https://raw.githubusercontent.com/{login}/{repo}/{branch}/{_clean(path)}"


def get_slide_content_url(
    org_login: str,
    term: str,
    content_path: str,
    *,
    filename: str | None = "index.html",
) -> str:
    repo = f"content-{org_login}-{term}"
    path = f"{content_path}/{filename}" if filename else content_path
    return get_content_url(org_login, repo, path)


def _clean(path: str) -> str:
    return path[1:] if path.startswith("/") else path
