"""Shared test helpers: fixture images, instrumented encoders and stores."""

from __future__ import annotations

import asyncio
import io
import threading
from datetime import datetime, timezone
from typing import Callable, List, Tuple

from PIL import Image

from photo_converter.core.errors import StoreError
from photo_converter.core.security import sign_payload
from photo_converter.models.job import ConversionFormat, ConversionJob
from photo_converter.models.store import SignedTransaction
from photo_converter.services.image_encoder import EncodeResult, ImageEncoder
from photo_converter.services.job_store import InMemoryJobStore

SIGNING_SECRET = "test-signing-secret"
PRODUCT_IDS = ["heic_converter_weekly", "heic_converter_monthly", "heic_converter_lifetime"]


def make_image_bytes(size: Tuple[int, int] = (128, 96), fmt: str = "PNG", mode: str = "RGB") -> bytes:
    """Noisy gradient image, so lossy output size depends on quality."""

    gradient = Image.linear_gradient("L").resize(size)
    noise = Image.effect_noise(size, 48)
    image = Image.merge("RGB", (gradient, noise, gradient.transpose(Image.Transpose.FLIP_LEFT_RIGHT)))
    if mode != "RGB":
        image = image.convert(mode)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


class RecordingEncoder(ImageEncoder):
    """Real encoder that records every (format, quality) call."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.calls: List[Tuple[ConversionFormat, float]] = []

    def encode(self, data: bytes, fmt: ConversionFormat, quality: float) -> EncodeResult:
        self.calls.append((fmt, quality))
        return super().encode(data, fmt, quality)


class BlockingEncoder(RecordingEncoder):
    """Encoder whose worker thread parks until ``release`` is set."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.started = threading.Event()
        self.release = threading.Event()

    def encode(self, data: bytes, fmt: ConversionFormat, quality: float) -> EncodeResult:
        self.started.set()
        self.release.wait(timeout=5)
        return super().encode(data, fmt, quality)

    async def wait_started(self) -> None:
        assert await asyncio.to_thread(self.started.wait, 5)


class FailingJobStore(InMemoryJobStore):
    def persist(self, job: ConversionJob) -> str:
        raise StoreError("disk full")


class ThreadRecordingJobStore(InMemoryJobStore):
    """Store that records the thread each ``persist`` call ran on."""

    def __init__(self) -> None:
        super().__init__()
        self.persist_threads: List[int] = []

    def persist(self, job: ConversionJob) -> str:
        self.persist_threads.append(threading.get_ident())
        return super().persist(job)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds or fail after ``timeout``."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def forged_transaction(product_id: str, transaction_id: str = "txn_forged") -> SignedTransaction:
    """A well-formed transaction signed with the wrong key."""

    claims = {
        "transaction_id": transaction_id,
        "product_id": product_id,
        "purchased_at": datetime.now(timezone.utc).isoformat(),
    }
    return SignedTransaction(token=sign_payload(claims, "not-the-storefront-key"))
