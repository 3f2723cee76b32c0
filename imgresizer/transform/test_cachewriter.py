import datetime
from logging import Logger
from typing import Any, Optional

import pytest

from imgresizer.transform.cachewriter import SECONDS_PER_DAY, CacheWriter
from imgresizer.transform.engine import TransformedImage
from imgresizer.transform.errors import StoreError
from imgresizer.transform.request import ImageFormat
from imgresizer.typing import CacheKey, S3Key

EXPIRES_AT = datetime.datetime(2026, 4, 1, tzinfo=datetime.timezone.utc)

TRANSFORMED = TransformedImage(
    data=b'webp bytes',
    output_format=ImageFormat.WEBP,
    width=200,
    height=150,
    quality=80,
    cache_key=CacheKey('image.jpg/format=webp,height=150,quality=80,width=200'),
    expires_at=EXPIRES_AT,
    negotiated=True)


class RecordingStore:

  def __init__(self, error: Optional[Exception] = None):
    self.calls: list[tuple[Any, ...]] = []
    self.error = error

  def put_transformed(self, *args: Any) -> None:
    self.calls.append(args)
    if self.error is not None:
      raise self.error


def test_maybe_store(logger: Logger) -> None:
  store = RecordingStore()
  writer = CacheWriter(logger, store, enabled=True, retention_days=30)

  assert writer.maybe_store(TRANSFORMED, S3Key('image.jpg'))
  assert store.calls == [
      (
          TRANSFORMED.cache_key,
          b'webp bytes',
          'image/webp',
          30 * SECONDS_PER_DAY,
          EXPIRES_AT,
          'image.jpg',
      ),
  ]


def test_maybe_store_disabled(logger: Logger) -> None:
  store = RecordingStore()
  writer = CacheWriter(logger, store, enabled=False, retention_days=30)

  assert not writer.maybe_store(TRANSFORMED, S3Key('image.jpg'))
  assert store.calls == []


@pytest.mark.parametrize(
    'error,message,level', [
        (
            StoreError('failed to put transformed', code='AccessDenied'),
            'failed to store transformed',
            'WARNING',
        ),
        (
            RuntimeError('connection pool is full'),
            'failed to store transformed: unexpected error',
            'ERROR',
        ),
    ],
    ids=['store-error', 'unexpected'])
def test_maybe_store_failure_is_recovered(
    logger: Logger,
    caplog: pytest.LogCaptureFixture,
    error: Exception,
    message: str,
    level: str,
) -> None:
  store = RecordingStore(error)
  writer = CacheWriter(logger, store, enabled=True, retention_days=30)

  assert not writer.maybe_store(TRANSFORMED, S3Key('image.jpg'))
  assert len(store.calls) == 1
  logged = [(r.msg['message'], r.levelname) for r in caplog.records if isinstance(r.msg, dict)]
  assert logged == [(message, level)]
