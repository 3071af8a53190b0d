"""Batch execution: run many descriptors through one pipeline, collecting per-item outcomes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Tuple

import allure
from loguru import logger

from .descriptors import RequestDescriptor, ResponseDescriptor
from .errors import ApiClientError
from .pipeline import RequestPipeline
from .reporting import flat_reporting


@dataclass(frozen=True)
class BatchItem:
    """Outcome of one descriptor in a batch: exactly one of response/error is set."""
    index: int
    descriptor: RequestDescriptor
    response: Optional[ResponseDescriptor] = None
    error: Optional[ApiClientError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchResult:
    """Ordered batch outcomes; ``items[i]`` belongs to the i-th input descriptor."""
    items: Tuple[BatchItem, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    def successes(self) -> List[ResponseDescriptor]:
        return [item.response for item in self.items if item.ok]

    def errors(self) -> List[ApiClientError]:
        return [item.error for item in self.items if not item.ok]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[BatchItem]:
        return iter(self.items)

    def __getitem__(self, index: int) -> BatchItem:
        return self.items[index]


class BatchExecutor:
    """
    Runs descriptors through a RequestPipeline.

    Sequential by default, in input order. With ``concurrency > 1`` up to that
    many items are in flight at once; they still share the pipeline's single
    rate limiter and results keep input order. Their exchanges are attached flat
    under the batch step. A failing item never stops the batch.
    """

    def __init__(self, pipeline: RequestPipeline) -> None:
        self.pipeline = pipeline

    async def run_batch(
        self,
        descriptors: Iterable[RequestDescriptor],
        *,
        concurrency: int = 1,
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """
        Execute every descriptor and collect the outcomes.

        Args:
            descriptors: Requests to run
            concurrency: Maximum number of items in flight
            cancel: Cancellation event shared by every item

        Returns:
            BatchResult with one item per descriptor, in input order
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        descriptors = list(descriptors)
        logger.info(f"Running batch of {len(descriptors)} requests (concurrency={concurrency})")

        with allure.step(f"Batch of {len(descriptors)} requests"):
            if concurrency == 1:
                items = []
                for index, descriptor in enumerate(descriptors):
                    items.append(await self._run_item(index, descriptor, cancel))
            else:
                semaphore = asyncio.Semaphore(concurrency)

                async def bounded(index: int, descriptor: RequestDescriptor) -> BatchItem:
                    async with semaphore:
                        with flat_reporting():
                            return await self._run_item(index, descriptor, cancel)

                items = await asyncio.gather(
                    *(bounded(index, descriptor) for index, descriptor in enumerate(descriptors))
                )

        result = BatchResult(tuple(items))
        logger.info(f"Batch finished: {result.succeeded}/{result.total} succeeded, {result.failed} failed")
        return result

    async def _run_item(
        self,
        index: int,
        descriptor: RequestDescriptor,
        cancel: Optional[asyncio.Event],
    ) -> BatchItem:
        try:
            response = await self.pipeline.execute(descriptor, cancel=cancel)
        except ApiClientError as e:
            logger.warning(f"Batch item {index} ({descriptor.method} {descriptor.path}) failed: {e}")
            return BatchItem(index, descriptor, error=e)
        return BatchItem(index, descriptor, response=response)


__all__ = ["BatchItem", "BatchResult", "BatchExecutor"]
