import dataclasses
import datetime
import logging
import re
from typing import Any, Optional
from urllib import parse

from botocore.exceptions import BotoCoreError, ClientError
from dateutil import parser
from mypy_boto3_s3.client import S3Client

from imgresizer.transform.errors import (
    NotFoundError,
    PayloadTooLargeError,
    StoreError
)
from imgresizer.typing import CacheKey, S3Key

EXPIRES_AT_METADATA = 'expires-at'
ORIGINAL_KEY_METADATA = 'original-key'

expiration_re = re.compile(r'\s*([\w-]+)="([^"]*)"(:?,|$)')


def parse_expiration(s: str) -> dict[str, str]:
  return {m.group(1): m.group(2) for m in expiration_re.finditer(s)}


def client_error_code(exception: ClientError) -> Optional[str]:
  if 'Error' not in exception.response:
    return None
  return exception.response['Error'].get('Code')


def is_not_found_client_error(exception: ClientError) -> bool:
  return client_error_code(exception) in ['404', 'NoSuchKey']


@dataclasses.dataclass(frozen=True)
class OriginalImage:
  data: bytes
  content_type: str

  @property
  def byte_length(self) -> int:
    return len(self.data)


class S3Store:
  """Reads originals from one bucket and writes transformed variants to another."""

  def __init__(
      self,
      log: logging.Logger,
      s3: S3Client,
      original_bucket: str,
      transformed_bucket: str,
      max_image_size: int,
  ):
    self.log = log
    self.s3 = s3
    self.original_bucket = original_bucket
    self.transformed_bucket = transformed_bucket
    self.max_image_size = max_image_size

  def too_large(self, key: S3Key, size: int) -> PayloadTooLargeError:
    return PayloadTooLargeError(
        'original exceeds size limit', key=key, size=size, limit=self.max_image_size)

  def fetch_original(self, key: S3Key) -> OriginalImage:
    try:
      res = self.s3.get_object(Bucket=self.original_bucket, Key=key)
    except ClientError as e:
      if is_not_found_client_error(e):
        raise NotFoundError('original not found', key=key)
      raise StoreError(
          'failed to get original', code=client_error_code(e), key=key, reason=str(e))
    except BotoCoreError as e:
      raise StoreError('failed to get original', key=key, reason=str(e))

    body = res['Body']
    if self.max_image_size < res.get('ContentLength', 0):
      body.close()
      raise self.too_large(key, res['ContentLength'])

    buf = bytearray()
    try:
      for chunk in body.iter_chunks():
        buf += chunk
        if self.max_image_size < len(buf):
          raise self.too_large(key, len(buf))
    except BotoCoreError as e:
      raise StoreError('failed to read original', key=key, reason=str(e))
    finally:
      body.close()

    return OriginalImage(
        data=bytes(buf), content_type=res.get('ContentType', 'application/octet-stream'))

  def put_transformed(
      self,
      cache_key: CacheKey,
      data: bytes,
      content_type: str,
      ttl: int,
      expires_at: datetime.datetime,
      original_key: S3Key,
  ) -> None:
    try:
      res = self.s3.put_object(
          Bucket=self.transformed_bucket,
          Key=cache_key,
          Body=data,
          ContentType=content_type,
          CacheControl=f'max-age={ttl}',
          Expires=expires_at,
          Metadata={
              EXPIRES_AT_METADATA: expires_at.astimezone(
                  datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
              ORIGINAL_KEY_METADATA: parse.quote(original_key),
          })
    except ClientError as e:
      raise StoreError(
          'failed to put transformed', code=client_error_code(e), key=cache_key, reason=str(e))
    except BotoCoreError as e:
      raise StoreError('failed to put transformed', key=cache_key, reason=str(e))

    if 'Expiration' in res:
      self.log_expiration(cache_key, res['Expiration'])

  def log_expiration(self, cache_key: CacheKey, expiration: str) -> None:
    d = parse_expiration(expiration)
    exp_str = d.get('expiry-date')
    if exp_str is None:
      self.log.warning({
          'message': 'expiry-date not found',
          'key': cache_key,
          'expiration': expiration,
      })
      return

    log: dict[str, Any] = {
        'message': 'lifecycle expiration',
        'key': cache_key,
        'expiry_date': parser.parse(exp_str).isoformat(),
    }
    if 'rule-id' in d:
      log['rule_id'] = d['rule-id']
    self.log.debug(log)
