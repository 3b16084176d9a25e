"""Raw-file fallback used when vector search finds nothing.

A fixed list of source names is tried in order against a raw file source
(a local directory or a Supabase Storage bucket). The first file that yields
non-empty normalized text becomes the context excerpt.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import quote
import httpx
import structlog

from corpus_rag import config
from corpus_rag.errors import FallbackFailure
from corpus_rag.rag.normalizer import normalize_text

logger = structlog.get_logger()


class RawFileSource(ABC):
    """Listing and download of raw corpus files."""

    @abstractmethod
    async def list_files(self, search: str) -> List[str]:
        """Return names of files matching a search term."""

    @abstractmethod
    async def download(self, name: str) -> bytes:
        """Return the raw bytes of a file."""


class LocalDirectorySource(RawFileSource):
    """Raw files stored in a local directory."""

    def __init__(self, root: Path = None):
        self.root = Path(root or config.RAW_FILES_DIR)

    async def list_files(self, search: str) -> List[str]:
        if not self.root.is_dir():
            raise FallbackFailure(f"Raw files directory not found: {self.root}")
        needle = search.lower()
        return sorted(
            path.name
            for path in self.root.iterdir()
            if path.is_file() and needle in path.name.lower()
        )

    async def download(self, name: str) -> bytes:
        path = self.root / name
        # Names come from list_files, never from user input, but stay inside root
        if path.resolve().parent != self.root.resolve():
            raise FallbackFailure(f"Refusing to read outside raw files directory: {name}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise FallbackFailure(f"Failed to read {name}: {e}") from e


class SupabaseStorageSource(RawFileSource):
    """Raw files in a Supabase Storage bucket, via its REST API."""

    def __init__(
        self,
        url: str = None,
        key: str = None,
        bucket: str = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = (url or config.SUPABASE_URL).rstrip("/")
        self.key = config.SUPABASE_KEY if key is None else key
        self.bucket = bucket or config.STORAGE_BUCKET
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self.url}/storage/v1",
            headers={"apikey": self.key, "Authorization": f"Bearer {self.key}"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def list_files(self, search: str) -> List[str]:
        payload = {"prefix": "", "search": search, "limit": 1, "offset": 0}
        try:
            async with self._client() as client:
                response = await client.post(f"/object/list/{self.bucket}", json=payload)
                response.raise_for_status()
                entries = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FallbackFailure(f"Storage list failed: {e}") from e

        return [entry["name"] for entry in entries or [] if entry.get("name")]

    async def download(self, name: str) -> bytes:
        try:
            async with self._client() as client:
                response = await client.get(f"/object/{self.bucket}/{quote(name)}")
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise FallbackFailure(f"Storage download of {name} failed: {e}") from e


class FallbackResolver:
    """Best-effort lookup of a raw corpus excerpt."""

    def __init__(
        self,
        file_source: RawFileSource,
        candidates: Sequence[str] = None,
        excerpt_chars: int = None,
    ):
        """Initialize the resolver.

        Args:
            file_source: Where raw files live
            candidates: File names to try, in order (default from config)
            excerpt_chars: Maximum excerpt length (default from config)
        """
        self.file_source = file_source
        self.candidates = list(config.FALLBACK_SOURCES if candidates is None else candidates)
        self.excerpt_chars = excerpt_chars or config.FALLBACK_EXCERPT_CHARS

    async def _load_candidate(self, filename: str) -> Optional[str]:
        names = await self.file_source.list_files(filename)
        match = next((n for n in names if n.lower() == filename.lower()), None)
        if match is None:
            return None

        raw = await self.file_source.download(match)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FallbackFailure(f"{match} is not valid UTF-8: {e}") from e

        return normalize_text(text)[: self.excerpt_chars] or None

    async def resolve(self) -> Optional[str]:
        """Return the first non-empty excerpt, or None.

        Never raises for lookup failures; they are logged and the next
        candidate is tried.
        """
        for filename in self.candidates:
            try:
                excerpt = await self._load_candidate(filename)
            except FallbackFailure as e:
                logger.warning("fallback_candidate_failed", filename=filename, error=str(e))
                continue

            if excerpt:
                logger.info("fallback_context_found", filename=filename, length=len(excerpt))
                return excerpt

        logger.info("fallback_no_match", candidates=len(self.candidates))
        return None


def build_file_source(backend: str = None) -> RawFileSource:
    """Create the raw file source selected by configuration."""
    backend = backend or config.FALLBACK_BACKEND
    if backend == "supabase":
        return SupabaseStorageSource()
    if backend == "local":
        return LocalDirectorySource()
    raise ValueError(f"Unknown fallback backend: {backend}")
