import base64
import hashlib
import json
from http import HTTPStatus
from typing import Optional

import imgresizer
from imgresizer.transform.engine import TransformedImage
from imgresizer.transform.errors import TransformFailure
from imgresizer.typing import ResponseResult

DIAGNOSTIC_HEADER = 'x-image-transformer'
JSON_MIME = 'application/json'

Timings = dict[str, int]


def json_dump(obj: object) -> str:
  return json.dumps(obj, separators=(',', ':'), sort_keys=True)


def diagnostic_value() -> str:
  return f'v{imgresizer.version}'


def entity_tag(data: bytes) -> str:
  return f'"{hashlib.sha256(data).hexdigest()}"'


def server_timing(timings: Timings) -> str:
  # Durations are kept in microseconds; Server-Timing wants milliseconds.
  return ','.join(f'{name};dur={us / 1000:.3f}' for name, us in timings.items())


def compose(
    transformed: TransformedImage,
    resp_max_age: int,
    timings: Optional[Timings] = None,
) -> ResponseResult:
  headers = {
      'content-type': transformed.content_type,
      'cache-control': f'public, max-age={resp_max_age}',
      DIAGNOSTIC_HEADER: diagnostic_value(),
      'etag': entity_tag(transformed.data),
  }

  if transformed.negotiated:
    headers['vary'] = 'Accept'

  if timings:
    headers['server-timing'] = server_timing(timings)

  return {
      'statusCode': int(HTTPStatus.OK),
      'headers': headers,
      'body': base64.b64encode(transformed.data).decode(),
      'isBase64Encoded': True,
  }


def compose_redirect(location: str, negotiated: bool) -> ResponseResult:
  headers = {
      'location': location,
      'cache-control': 'private, no-store',
      DIAGNOSTIC_HEADER: diagnostic_value(),
  }
  if negotiated:
    headers['vary'] = 'Accept'

  return {
      'statusCode': int(HTTPStatus.FOUND),
      'headers': headers,
  }


def error_cache_control(status: int, error_max_age: int) -> str:
  if 500 <= status < 600:
    return 'no-store'
  return f'public, max-age={error_max_age}'


def compose_error(failure: TransformFailure, error_max_age: int) -> ResponseResult:
  return {
      'statusCode': int(failure.status),
      'headers': {
          'content-type': JSON_MIME,
          'cache-control': error_cache_control(int(failure.status), error_max_age),
          DIAGNOSTIC_HEADER: diagnostic_value(),
      },
      'body': json_dump({
          'error': failure.kind,
          'message': failure.message,
      }),
      'isBase64Encoded': False,
  }
