import datetime
import hmac
import logging
import os
import time
from typing import Any, Callable, Mapping, Optional
from urllib import parse

import boto3
from botocore.config import Config
from dateutil import tz

from imgresizer.log import init_logging
from imgresizer.transform.cachewriter import CacheWriter
from imgresizer.transform.config import Deadline, XParams
from imgresizer.transform.engine import (
    TransformedImage,
    encodable_formats,
    transform
)
from imgresizer.transform.errors import (
    ForbiddenError,
    InternalError,
    MethodNotAllowedError,
    PayloadTooLargeError,
    TransformFailure
)
from imgresizer.transform.request import ImageFormat, validate
from imgresizer.transform.response import (
    Timings,
    compose,
    compose_error,
    compose_redirect
)
from imgresizer.transform.store import OriginalImage, S3Store
from imgresizer.typing import FunctionUrlEvent, HttpPath, ResponseResult

ORIGIN_SECRET_HEADER = 'x-origin-secret-header'

S3_CONNECT_TIMEOUT = 2
S3_READ_TIMEOUT = 10
S3_MAX_ATTEMPTS = 2

ALLOWED_METHODS = ['GET', 'HEAD']


def get_now() -> datetime.datetime:
  # Return timezone-aware datetime
  return datetime.datetime.now(tz=tz.tzutc())


logger = init_logging(__name__)


def elapsed_us(start_ns: int) -> int:
  return (time.time_ns() - start_ns) // 1000


class ImgTransformer:
  """Handles one edge cache miss at a time.

  Instances hold only configuration and clients, so one instance is reused
  by every warm invocation with the same ``XParams``.
  """
  instances: dict[XParams, 'ImgTransformer'] = {}

  def __init__(
      self,
      log: logging.Logger,
      params: XParams,
      store: S3Store,
      encodable: Optional[frozenset[ImageFormat]] = None,
  ):
    self.log = log
    self.params = params
    self.store = store
    self.encodable = encodable_formats() if encodable is None else encodable
    self.cache_writer = CacheWriter(log, store, params.cache_enabled, params.retention_days)

  @classmethod
  def from_lambda(cls, log: logging.Logger, env: Mapping[str, str]) -> Optional['ImgTransformer']:
    try:
      params = XParams.from_env(env)
    except KeyError as e:
      log.warning({
          'message': 'environment variable not found',
          'key': str(e),
      })
      return None
    except ValueError as e:
      log.warning({
          'message': 'invalid environment variable',
          'reason': str(e),
      })
      return None

    if params not in cls.instances:
      s3 = boto3.client(
          's3',
          region_name=params.region,
          config=Config(
              connect_timeout=S3_CONNECT_TIMEOUT,
              read_timeout=S3_READ_TIMEOUT,
              retries={'max_attempts': S3_MAX_ATTEMPTS}))
      store = S3Store(
          log=log,
          s3=s3,
          original_bucket=params.original_bucket,
          transformed_bucket=params.transformed_bucket,
          max_image_size=params.max_image_size)
      cls.instances[params] = cls(log=log, params=params, store=store)

    return cls.instances[params]

  def check_origin_secret(self, headers: Mapping[str, str]) -> None:
    if self.params.origin_secret == '':
      return

    given = headers.get(ORIGIN_SECRET_HEADER, '')
    if not hmac.compare_digest(given.encode(), self.params.origin_secret.encode()):
      raise ForbiddenError('origin secret mismatch')

  def run(
      self,
      method: str,
      path: HttpPath,
      qstr: str,
      headers: Mapping[str, str],
      deadline: Deadline,
      log_context: dict[str, Any],
  ) -> ResponseResult:
    if method not in ALLOWED_METHODS:
      raise MethodNotAllowedError(f'method not allowed: {method}', method=method)

    self.check_origin_secret(headers)

    request = validate(
        path, parse.parse_qs(qstr, keep_blank_values=True), headers.get('accept', ''))
    timings: Timings = {}

    deadline.check('fetch')
    start_ns = time.time_ns()
    original = self.store.fetch_original(request.object_key)
    timings['img-download'] = elapsed_us(start_ns)

    deadline.check('transform')
    start_ns = time.time_ns()
    transformed = transform(
        original,
        request,
        self.params.retention_days,
        get_now(),
        encodable=self.encodable,
        max_pixels=self.params.max_image_pixels)
    timings['img-transform'] = elapsed_us(start_ns)

    stored = False
    if self.cache_writer.enabled:
      deadline.check('store')
      start_ns = time.time_ns()
      stored = self.cache_writer.maybe_store(transformed, request.object_key)
      timings['img-upload'] = elapsed_us(start_ns)

    log_context.update(self.describe(original, transformed, stored))

    if self.params.max_response_size < transformed.byte_length:
      if stored:
        return compose_redirect(f'{path}?{qstr}' if qstr else path, transformed.negotiated)
      raise PayloadTooLargeError(
          'transformed image exceeds response size limit',
          size=transformed.byte_length,
          limit=self.params.max_response_size)

    res = compose(transformed, self.params.resp_max_age, timings)
    log_context['timings'] = timings

    if method == 'HEAD':
      del res['body']
      res['isBase64Encoded'] = False

    return res

  def describe(
      self,
      original: OriginalImage,
      transformed: TransformedImage,
      stored: bool,
  ) -> dict[str, Any]:
    return {
        'cache_key': transformed.cache_key,
        'format': transformed.output_format.value,
        'size': (transformed.width, transformed.height),
        'quality': transformed.quality,
        'orig_size': original.byte_length,
        'orig_type': original.content_type,
        'img_size': transformed.byte_length,
        'stored': stored,
    }

  def process(
      self,
      method: str,
      path: HttpPath,
      qstr: str,
      headers: Mapping[str, str],
      deadline: Deadline,
  ) -> ResponseResult:
    log_context: dict[str, Any] = {
        'path': str(path),
        'qstr': qstr,
        'accept_header': headers.get('accept', ''),
    }

    try:
      res = self.run(method, path, qstr, headers, deadline, log_context)
    except TransformFailure as e:
      log = self.log.error if 500 <= e.status else self.log.warning
      log({'message': 'transform failed', **log_context, **e.to_log()})
      return compose_error(e, self.params.error_max_age)
    except Exception as e:
      self.log.exception({
          'message': 'error during process()',
          **log_context,
          'reason': str(e),
          'type': type(e).__name__,
      })
      return compose_error(InternalError('internal error'), self.params.error_max_age)

    self.log.debug({
        'message': 'responded',
        **log_context,
        'status': res['statusCode'],
        'elapsed_ms': deadline.elapsed_ms(),
    })
    return res


def lambda_main(
    event: FunctionUrlEvent,
    remaining_ms: Optional[Callable[[], int]] = None,
    env: Mapping[str, str] = os.environ,
) -> ResponseResult:
  server = ImgTransformer.from_lambda(logger, env)
  if server is None:
    return compose_error(InternalError('server misconfigured'), 0)

  deadline = Deadline(server.params.time_budget_ms, remaining_ms)

  return server.process(
      event['requestContext']['http']['method'],
      event['rawPath'],
      event.get('rawQueryString', ''),
      event.get('headers', {}),
      deadline,
  )
