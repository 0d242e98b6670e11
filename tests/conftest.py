from __future__ import annotations

import pytest

from photo_converter.core.container import local_catalog
from photo_converter.services.job_store import InMemoryJobStore
from photo_converter.services.storefront import LocalStorefront
from photo_converter.services.transaction_verifier import TransactionVerifier
from tests.helpers import (
    PRODUCT_IDS,
    SIGNING_SECRET,
    BlockingEncoder,
    RecordingEncoder,
    make_image_bytes,
)


@pytest.fixture
def image_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def encoder() -> RecordingEncoder:
    return RecordingEncoder()


@pytest.fixture
def blocking_encoder() -> BlockingEncoder:
    encoder = BlockingEncoder()
    yield encoder
    encoder.release.set()


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def verifier() -> TransactionVerifier:
    return TransactionVerifier(SIGNING_SECRET)


@pytest.fixture
def storefront() -> LocalStorefront:
    return LocalStorefront(local_catalog(PRODUCT_IDS), SIGNING_SECRET)
