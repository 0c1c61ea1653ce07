"""Concatenate CSS/JS files into content-addressed merged bundles."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Union

import requests

from .models import MergedAsset
from .utils import logger as base_logger, strip_query

MERGE_KINDS = ("css", "js")
MERGED_DIR = Path("pub") / "static" / "merged"
MERGED_URL_PATH = "static/merged"
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_READ_TIMEOUT = 10.0


def merged_file_name(files: Iterable[str], kind: str) -> str:
    """``merged_<md5 of the concatenated input list>.<kind>``."""
    digest = hashlib.md5("".join(files).encode("utf-8")).hexdigest()
    return f"merged_{digest}.{kind}"


def _is_remote(url: str) -> bool:
    return url.startswith("//") or url.startswith("http://") or url.startswith("https://")


class AssetMerger:
    """Fetches an ordered list of assets and stores their concatenation once."""

    def __init__(
        self,
        document_root: Union[str, Path],
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.document_root = Path(document_root)
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = (connect_timeout, read_timeout)
        self.logger = logger or base_logger

    def merge(self, files: List[str], kind: str) -> str:
        """Return the public URL of the merged bundle, or ``""`` for no files."""
        if not files:
            return ""
        return self.merge_asset(files, kind).url

    def merge_asset(self, files: List[str], kind: str) -> MergedAsset:
        if kind not in MERGE_KINDS:
            raise ValueError(f"Unsupported merge kind: {kind}")
        files = list(files)
        name = merged_file_name(files, kind)
        path = self.document_root / MERGED_DIR / kind / name
        url = f"{self.base_url}/{MERGED_URL_PATH}/{kind}/{name}"

        if path.exists():
            self.logger.debug("Merged %s bundle already exists: %s", kind, path)
            return MergedAsset(url=url, path=path, sources=files, cache_hit=True)

        content = self._concatenate(files)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._write_atomic(path, content)
        self.logger.info("Merged %d %s files into %s", len(files), kind, path)
        return MergedAsset(url=url, path=path, sources=files, cache_hit=False)

    def _concatenate(self, files: Iterable[str]) -> str:
        parts: List[str] = []
        for file_url in files:
            file_url = strip_query(file_url)
            content = self.fetch(file_url)
            if not content:
                continue
            parts.append(f"/* Source: {file_url} */\n{content}\n")
        return "".join(parts)

    def fetch(self, url: str) -> Optional[str]:
        """Read one input; any failure is logged and yields ``None``."""
        if _is_remote(url):
            return self._fetch_remote(url)
        return self._read_local(url)

    def _fetch_remote(self, url: str) -> Optional[str]:
        target = "https:" + url if url.startswith("//") else url
        try:
            resp = self.session.get(
                target,
                timeout=self.timeout,
                verify=False,
                allow_redirects=True,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            self.logger.error("Failed to fetch file: %s. Error: %s", url, exc)
            return None
        return resp.text

    def _read_local(self, url: str) -> Optional[str]:
        root = self.document_root.resolve()
        candidate = (root / url.lstrip("/")).resolve()
        if candidate != root and root not in candidate.parents:
            self.logger.error("Refusing to read %s outside the document root", url)
            return None
        if not candidate.is_file():
            self.logger.warning("Local file not found: %s", candidate)
            return None
        try:
            return candidate.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            self.logger.error("Failed to read file: %s. Error: %s", candidate, exc)
            return None

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
