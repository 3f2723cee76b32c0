import datetime
import logging
from typing import Protocol

from imgresizer.transform.engine import TransformedImage
from imgresizer.transform.errors import StoreError
from imgresizer.typing import CacheKey, S3Key

SECONDS_PER_DAY = 24 * 60 * 60


class TransformedStore(Protocol):

  def put_transformed(
      self,
      cache_key: CacheKey,
      data: bytes,
      content_type: str,
      ttl: int,
      expires_at: datetime.datetime,
      original_key: S3Key,
  ) -> None:
    ...


class CacheWriter:
  """Persists transformed variants on a best-effort basis.

  Writes are plain overwrites: concurrent misses for one key write identical
  bytes, so whichever lands last is as good as any other.
  """

  def __init__(
      self,
      log: logging.Logger,
      store: TransformedStore,
      enabled: bool,
      retention_days: int,
  ):
    self.log = log
    self.store = store
    self.enabled = enabled
    self.ttl = retention_days * SECONDS_PER_DAY

  def maybe_store(self, transformed: TransformedImage, original_key: S3Key) -> bool:
    if not self.enabled:
      return False

    try:
      self.store.put_transformed(
          transformed.cache_key,
          transformed.data,
          transformed.content_type,
          self.ttl,
          transformed.expires_at,
          original_key,
      )
    except StoreError as e:
      self.log.warning({'message': 'failed to store transformed', **e.to_log()})
      return False
    except Exception as e:
      self.log.error({
          'message': 'failed to store transformed: unexpected error',
          'key': transformed.cache_key,
          'reason': str(e),
      })
      return False

    self.log.debug({
        'message': 'stored transformed',
        'key': transformed.cache_key,
        'ttl': self.ttl,
        'img_size': transformed.byte_length,
    })
    return True
