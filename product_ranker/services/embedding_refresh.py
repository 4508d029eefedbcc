"""Catalog embedding refresh and the upload job state machine."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from ..adapters.base import CatalogStore
from ..config.settings import get_refresh_config
from ..models.core import (
    CatalogUploadJob, Embedding, Product, RefreshReport, UploadJobStatus
)
from ..models.embedder import Embedder, build_embedding_text, create_embedder
from ..utils.error_handling import (
    ErrorContext, ErrorHandler, InvalidJobTransition, StoreError, get_error_handler
)
from ..utils.monitoring import PerformanceMonitor, get_performance_monitor


logger = logging.getLogger(__name__)


class EmbeddingRefreshJob:
    """Re-embeds catalog products and upserts their vectors.

    Each product is handled independently with bounded parallelism. Upserts
    are keyed on product id, so re-running the job on an unchanged catalog
    leaves the same vectors and text in place. A failing product is recorded
    in the report and does not stop the rest of the batch.
    """

    def __init__(self, store: CatalogStore, embedder: Optional[Embedder] = None,
                 max_concurrency: Optional[int] = None, text_used_max_chars: Optional[int] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        refresh_config = get_refresh_config()

        self.store = store
        self.embedder = embedder or create_embedder()
        self.max_concurrency = max_concurrency or int(refresh_config.get("max_concurrency", 8))
        self.text_used_max_chars = text_used_max_chars or int(refresh_config.get("text_used_max_chars", 1000))
        self.error_handler = error_handler or get_error_handler()
        self.monitor = monitor or get_performance_monitor()

        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")

    async def run(self, products: Optional[Sequence[Product]] = None) -> RefreshReport:
        """Embed the given products, or the whole catalog when none are given."""
        if products is None:
            products = await self.store.get_products(None)

        report = RefreshReport(total=len(products), model=self.embedder.model_name)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def refresh_bounded(product: Product) -> Optional[Embedding]:
            async with semaphore:
                try:
                    return await self.refresh_product(product)
                except Exception as e:
                    self.error_handler.handle_error(e, ErrorContext(
                        component="EmbeddingRefreshJob",
                        operation="refresh_product",
                        product_id=product.id,
                    ))
                    report.failures[product.id] = str(e)
                    return None

        async with self.monitor.measure_async_operation("embedding_refresh"):
            results = await asyncio.gather(*(refresh_bounded(p) for p in products))

        report.embedded = sum(1 for result in results if result is not None)
        report.failed = len(report.failures)
        report.finished_at = datetime.now()

        collector = self.monitor.metrics_collector
        collector.increment_counter("embeddings_refreshed", report.embedded)
        collector.increment_counter("embeddings_failed", report.failed)

        logger.info(f"Embedding refresh finished: {report.embedded}/{report.total} embedded, "
                    f"{report.failed} failed, model {report.model}")
        return report

    async def refresh_product(self, product: Product) -> Embedding:
        """Embed one product and overwrite its stored embedding."""
        text = build_embedding_text(product)
        vector = await self.embedder.embed(text)
        return await self.store.upsert_embedding(
            product.id, vector, self.embedder.model_name, text[:self.text_used_max_chars]
        )


class UploadJobRunner:
    """Drives a catalog upload job through its states.

    pending -> processing -> embedding -> completed, with any non-terminal
    state able to move to failed. Every other transition raises
    InvalidJobTransition.
    """

    def __init__(self, store: CatalogStore, refresh_job: Optional[EmbeddingRefreshJob] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.store = store
        self.refresh_job = refresh_job or EmbeddingRefreshJob(store)
        self.error_handler = error_handler or get_error_handler()

    async def create_job(self, filename: str, total_rows: int = 0,
                         uploaded_by: Optional[int] = None) -> CatalogUploadJob:
        job = CatalogUploadJob(filename=filename, total_rows=total_rows, uploaded_by=uploaded_by)
        job.id = await self.store.create_upload_job(job)
        logger.info(f"Created upload job {job.id} for {filename}")
        return job

    async def run(self, job_id: int, rows: Iterable[Mapping[str, Any]]) -> CatalogUploadJob:
        """Ingest raw rows for a job, embed the products and finish the job.

        A pending job is started first. Failures after the job has started move
        it to ``failed`` with the error message instead of propagating.

        Raises:
            StoreError: If the job does not exist
            InvalidJobTransition: If the job is neither pending nor processing
        """
        job = await self.store.get_upload_job(job_id)
        if job is None:
            raise StoreError(f"Unknown upload job {job_id}")

        if job.status is UploadJobStatus.PENDING:
            job = await self.transition(job, UploadJobStatus.PROCESSING, started_at=datetime.now())
        elif job.status is not UploadJobStatus.PROCESSING:
            raise InvalidJobTransition(
                f"Upload job {job_id} is {job.status.value}; only pending or processing jobs can run"
            )

        try:
            rows = list(rows)
            products: List[Product] = []
            bad_rows = 0
            for row in rows:
                try:
                    products.append(Product.from_row(row))
                except (ValueError, TypeError) as e:
                    bad_rows += 1
                    logger.warning(f"Upload job {job_id}: skipping row: {e}")

            if rows and not products:
                raise ValueError(f"No valid product rows among {len(rows)} uploaded rows")

            for product in products:
                await self.store.upsert_product(product)

            job = replace(job, total_rows=len(rows), processed_rows=len(products), failed_rows=bad_rows)
            await self.store.update_upload_job(job)

            job = await self.transition(job, UploadJobStatus.EMBEDDING)
            report = await self.refresh_job.run(products)

            return await self.transition(
                job, UploadJobStatus.COMPLETED,
                embedded_rows=report.embedded,
                failed_rows=bad_rows + report.failed,
                completed_at=datetime.now(),
            )
        except InvalidJobTransition:
            raise
        except Exception as e:
            self.error_handler.handle_error(e, ErrorContext(
                component="UploadJobRunner",
                operation="run",
                job_id=job_id,
            ))
            return await self.transition(job, UploadJobStatus.FAILED,
                                         error_message=str(e), completed_at=datetime.now())

    async def transition(self, job: CatalogUploadJob, target: UploadJobStatus,
                         **changes: Any) -> CatalogUploadJob:
        """Move a job to ``target`` and persist it.

        Raises:
            InvalidJobTransition: If the transition is not allowed from the current state
        """
        if not job.status.can_transition_to(target):
            raise InvalidJobTransition(
                f"Upload job {job.id} cannot move from {job.status.value} to {target.value}"
            )
        updated = replace(job, status=target, **changes)
        await self.store.update_upload_job(updated)
        logger.info(f"Upload job {job.id}: {job.status.value} -> {target.value}")
        return updated
