from http import HTTPStatus
from typing import Any, Optional


class TransformFailure(Exception):
  """A failure that ends a request with a specific error response.

  ``kind`` is the name exposed to clients and ``status`` the HTTP status the
  response carries.
  """
  kind = 'InternalError'
  status = HTTPStatus.INTERNAL_SERVER_ERROR

  def __init__(self, message: str, **context: Any):
    super().__init__(message)
    self.message = message
    self.context = context

  def to_log(self) -> dict[str, Any]:
    return {'kind': self.kind, 'status': int(self.status), 'reason': self.message, **self.context}


class ValidationError(TransformFailure):
  kind = 'ValidationError'
  status = HTTPStatus.BAD_REQUEST

  def __init__(self, field: str, message: str):
    super().__init__(f'{field}: {message}', field=field)
    self.field = field


class ForbiddenError(TransformFailure):
  kind = 'ForbiddenError'
  status = HTTPStatus.FORBIDDEN


class NotFoundError(TransformFailure):
  kind = 'NotFoundError'
  status = HTTPStatus.NOT_FOUND


class MethodNotAllowedError(TransformFailure):
  kind = 'MethodNotAllowedError'
  status = HTTPStatus.METHOD_NOT_ALLOWED


class PayloadTooLargeError(TransformFailure):
  kind = 'PayloadTooLargeError'
  status = HTTPStatus.REQUEST_ENTITY_TOO_LARGE


class DecodeError(TransformFailure):
  kind = 'DecodeError'
  status = HTTPStatus.UNPROCESSABLE_ENTITY


class UnsupportedFormatError(TransformFailure):
  kind = 'UnsupportedFormatError'
  status = HTTPStatus.UNPROCESSABLE_ENTITY


class DeadlineExceededError(TransformFailure):
  kind = 'TimeoutError'
  status = HTTPStatus.GATEWAY_TIMEOUT


class StoreError(TransformFailure):
  kind = 'StoreError'
  status = HTTPStatus.BAD_GATEWAY

  def __init__(self, message: str, code: Optional[str] = None, **context: Any):
    super().__init__(message, code=code, **context)
    self.code = code


class InternalError(TransformFailure):
  pass
