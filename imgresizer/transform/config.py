import dataclasses
import time
from typing import Callable, Mapping, Optional

from imgresizer.transform.errors import DeadlineExceededError

DEFAULT_RETENTION_DAYS = 90
DEFAULT_RESP_MAX_AGE = 365 * 24 * 60 * 60
DEFAULT_ERROR_MAX_AGE = 10
# Lambda caps synchronous response payloads at 6 MB; base64 inflates by 4/3.
DEFAULT_MAX_IMAGE_SIZE = 4_700_000
DEFAULT_MAX_RESPONSE_SIZE = 4_700_000
# Bounds decoded memory (about 4 bytes per pixel) regardless of the compressed size.
DEFAULT_MAX_IMAGE_PIXELS = 40_000_000
DEFAULT_TIME_BUDGET_MS = 25_000

# Left for composing and returning the response once the budget is spent.
LAMBDA_DEADLINE_MARGIN_MS = 500


def parse_bool(s: str) -> bool:
  v = s.strip().lower()
  if v in ['true', '1', 'yes', 'on']:
    return True
  if v in ['false', '0', 'no', 'off', '']:
    return False
  raise ValueError(f'invalid boolean: {s}')


@dataclasses.dataclass(eq=True, frozen=True)
class XParams:
  region: str
  original_bucket: str
  transformed_bucket: str
  store_transformed: bool
  retention_days: int
  resp_max_age: int
  error_max_age: int
  max_image_size: int
  max_image_pixels: int
  max_response_size: int
  time_budget_ms: int
  origin_secret: str

  @property
  def cache_enabled(self) -> bool:
    return self.store_transformed and self.transformed_bucket != ''

  @classmethod
  def from_env(cls, env: Mapping[str, str]) -> 'XParams':
    """Raises KeyError for a missing required variable, ValueError for a malformed one."""
    params = cls(
        region=env['AWS_REGION'],
        original_bucket=env['ORIGINAL_BUCKET'],
        transformed_bucket=env.get('TRANSFORMED_BUCKET', ''),
        store_transformed=parse_bool(env.get('STORE_TRANSFORMED', 'true')),
        retention_days=int(env.get('TRANSFORMED_RETENTION_DAYS', DEFAULT_RETENTION_DAYS)),
        resp_max_age=int(env.get('RESP_MAX_AGE', DEFAULT_RESP_MAX_AGE)),
        error_max_age=int(env.get('ERROR_MAX_AGE', DEFAULT_ERROR_MAX_AGE)),
        max_image_size=int(env.get('MAX_IMAGE_SIZE', DEFAULT_MAX_IMAGE_SIZE)),
        max_image_pixels=int(env.get('MAX_IMAGE_PIXELS', DEFAULT_MAX_IMAGE_PIXELS)),
        max_response_size=int(env.get('MAX_RESPONSE_SIZE', DEFAULT_MAX_RESPONSE_SIZE)),
        time_budget_ms=int(env.get('TIME_BUDGET_MS', DEFAULT_TIME_BUDGET_MS)),
        origin_secret=env.get('ORIGIN_SECRET', ''))

    if params.retention_days <= 0:
      raise ValueError(f'invalid TRANSFORMED_RETENTION_DAYS: {params.retention_days}')
    if params.max_image_size <= 0:
      raise ValueError(f'invalid MAX_IMAGE_SIZE: {params.max_image_size}')
    if params.max_image_pixels <= 0:
      raise ValueError(f'invalid MAX_IMAGE_PIXELS: {params.max_image_pixels}')
    if params.time_budget_ms <= 0:
      raise ValueError(f'invalid TIME_BUDGET_MS: {params.time_budget_ms}')

    return params


class Deadline:
  """Tracks the time left for one invocation.

  The effective deadline is the earlier of the configured budget and the
  platform's remaining time (minus a margin to respond).
  """

  def __init__(
      self,
      budget_ms: int,
      remaining_ms: Optional[Callable[[], int]] = None,
      margin_ms: int = LAMBDA_DEADLINE_MARGIN_MS,
      clock: Callable[[], float] = time.monotonic,
  ):
    self.clock = clock
    self.started = clock()
    limit_ms = budget_ms
    if remaining_ms is not None:
      limit_ms = min(limit_ms, remaining_ms() - margin_ms)
    self.expires = self.started + limit_ms / 1000

  def elapsed_ms(self) -> int:
    return int((self.clock() - self.started) * 1000)

  def left_ms(self) -> int:
    return int((self.expires - self.clock()) * 1000)

  def check(self, stage: str) -> None:
    if self.clock() >= self.expires:
      raise DeadlineExceededError(
          f'deadline exceeded before {stage}', stage=stage, elapsed_ms=self.elapsed_ms())
