"""
Batch Orchestrator

Runs the per-document pipeline over uploaded files. Each upload is either a
single CT-e XML or a ZIP archive of them; every .xml entry of an archive is
processed independently.

A failing document never aborts the batch: its error is recorded as a failed
outcome and processing moves on. The only condition that rejects the whole
batch is an unavailable store.

TALLY
-----
    processed_count  - documents stored and audited
    error_count      - failures, duplicates included
    duplicate_count  - documents skipped because their key was already stored
"""

import io
import zipfile
from dataclasses import dataclass, field
from typing import Iterable, Optional

import polars as pl

from shared.config import DEFAULT_TENANT_ID
from shared.database import Store
from shared.logging import get_logger
from shared.uploads import UploadedFile
from .extract import parse_document
from .process import DocumentOutcome, process_document
from .rates import RatePolicy


logger = get_logger(__name__)

DOCUMENT_EXTENSION = ".xml"

OUTCOME_SCHEMA = {
    "success": pl.Boolean,
    "xml_key": pl.Utf8,
    "cte_id": pl.Int64,
    "message": pl.Utf8,
    "filename": pl.Utf8,
    "duplicate": pl.Boolean,
}


@dataclass
class BatchResult:
    processed_count: int = 0
    error_count: int = 0
    outcomes: list[DocumentOutcome] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.duplicate)

    @property
    def message(self) -> str:
        return (
            f"Processing finished. {self.processed_count} files imported, "
            f"{self.error_count} failures."
        )

    def record(self, outcome: DocumentOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.success:
            self.processed_count += 1
        else:
            self.error_count += 1

    def to_frame(self) -> pl.DataFrame:
        """Outcomes as a DataFrame, in processing order."""
        return pl.DataFrame([o.to_dict() for o in self.outcomes], schema=OUTCOME_SCHEMA)


# =============================================================================
# ENTRY POINT
# =============================================================================

def process_batch(
    store: Store,
    files: Iterable[UploadedFile],
    tenant_id: int = DEFAULT_TENANT_ID,
    policy: Optional[RatePolicy] = None,
) -> BatchResult:
    """
    Audit every CT-e contained in the uploaded files.

    Args:
        store: Audit store
        files: Uploaded XML documents and/or ZIP archives
        tenant_id: Tenant scope
        policy: Rate table / band tie-break policies

    Returns:
        BatchResult with counts and ordered per-document outcomes

    Raises:
        ValueError: If no files were sent
        StorageUnavailable: If the store is not available
    """
    files = list(files)
    if not files:
        raise ValueError("No files sent.")

    store.require()

    result = BatchResult()
    for upload in files:
        if upload.is_zip():
            _process_archive(store, upload, result, tenant_id, policy)
        elif upload.is_xml():
            result.record(_process_single(store, upload.content, upload.filename, tenant_id, policy))
        else:
            logger.warning("upload_skipped", filename=upload.filename, content_type=upload.content_type)

    logger.info(
        "batch_finished",
        processed=result.processed_count,
        errors=result.error_count,
        duplicates=result.duplicate_count,
    )
    return result


def _process_archive(
    store: Store,
    upload: UploadedFile,
    result: BatchResult,
    tenant_id: int,
    policy: Optional[RatePolicy],
) -> None:
    try:
        archive = zipfile.ZipFile(io.BytesIO(upload.content))
    except zipfile.BadZipFile as e:
        logger.error("archive_failed", filename=upload.filename, error=str(e))
        result.record(DocumentOutcome(success=False, message=str(e), filename=upload.filename))
        return

    with archive:
        for entry in archive.infolist():
            if entry.is_dir() or not entry.filename.lower().endswith(DOCUMENT_EXTENSION):
                continue
            try:
                content = archive.read(entry)
            except (zipfile.BadZipFile, OSError) as e:
                logger.error("document_failed", filename=entry.filename, error=str(e))
                result.record(DocumentOutcome(success=False, message=str(e), filename=entry.filename))
                continue
            result.record(_process_single(store, content, entry.filename, tenant_id, policy))


def _process_single(
    store: Store,
    content: bytes,
    filename: str,
    tenant_id: int,
    policy: Optional[RatePolicy],
) -> DocumentOutcome:
    try:
        tree = parse_document(content)
        return process_document(store, tree, tenant_id=tenant_id, policy=policy, filename=filename)
    except Exception as e:
        logger.error("document_failed", filename=filename, error=str(e))
        return DocumentOutcome(success=False, message=str(e), filename=filename)
