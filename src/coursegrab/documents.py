from functools import partial
from pathlib import Path

from .downloader import DownloadEngine, DownloadPool
from .file_manager import FileManager, NameRegistry
from .logger import Reporter
from .models import DocumentReference, ManifestDocument


class DocumentDownloader:
    """
    Downloads lesson attachments into ``<course>/documents``.

    Names are claimed per course run: a second URL that sanitizes to an
    already claimed name gets a ``_<n>`` suffix, while the same URL seen again
    in a later lesson reuses its file and is recorded only once.
    """

    def __init__(
        self,
        engine: DownloadEngine,
        file_manager: FileManager,
        pool: DownloadPool | None = None,
        reporter: Reporter | None = None,
        names: NameRegistry | None = None,
    ):
        self.engine = engine
        self.file_manager = file_manager
        self.pool = pool or DownloadPool()
        self.reporter = reporter or Reporter()
        self.names = names or NameRegistry()
        self._recorded: set[str] = set()

    def resolve_filename(self, document: DocumentReference) -> str:
        return self.names.claim(document.url, document.filename)

    async def download_documents(
        self,
        documents: list[DocumentReference],
        course_dir: Path,
        lesson_index: int | None = None,
    ) -> list[ManifestDocument]:
        documents_dir = self.file_manager.ensure_dir(course_dir / "documents")
        pending: list[DocumentReference] = []
        seen: set[str] = set()
        for doc in documents:
            if doc.url in self._recorded or doc.url in seen:
                continue
            seen.add(doc.url)
            pending.append(doc)

        if not pending:
            self.reporter.info("documents.none", "No documents found to download")
            return []

        self.reporter.info(
            "documents.found", f"Found {len(pending)} documents to download", count=len(pending)
        )

        targets = [(doc, documents_dir / self.resolve_filename(doc)) for doc in pending]
        results = await self.pool.run(
            partial(self.engine.download_asset, doc.url, dest) for doc, dest in targets
        )

        downloaded: list[ManifestDocument] = []
        for (doc, dest), result in zip(targets, results):
            if not result.ok:
                self.reporter.error(
                    "documents.failed",
                    f"Failed to download {doc.filename}: {result.error}",
                    url=doc.url,
                )
                continue
            self._recorded.add(doc.url)
            downloaded.append(
                ManifestDocument(
                    filename=dest.name,
                    path=dest.relative_to(course_dir).as_posix(),
                    original_url=doc.url,
                    size=self.file_manager.file_size(dest),
                    lesson_index=lesson_index,
                )
            )
        return downloaded
