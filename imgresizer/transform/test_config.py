import pytest

from imgresizer.transform.config import (
    DEFAULT_MAX_IMAGE_PIXELS,
    DEFAULT_MAX_IMAGE_SIZE,
    DEFAULT_RESP_MAX_AGE,
    DEFAULT_RETENTION_DAYS,
    Deadline,
    XParams
)
from imgresizer.transform.errors import DeadlineExceededError

REQUIRED_ENV = {
    'AWS_REGION': 'us-east-1',
    'ORIGINAL_BUCKET': 'original-bucket',
}


class FakeClock:

  def __init__(self, now: float = 100.0):
    self.now = now

  def __call__(self) -> float:
    return self.now


def test_from_env_defaults() -> None:
  params = XParams.from_env(REQUIRED_ENV)

  assert params.region == 'us-east-1'
  assert params.original_bucket == 'original-bucket'
  assert params.transformed_bucket == ''
  assert params.store_transformed
  assert not params.cache_enabled
  assert params.retention_days == DEFAULT_RETENTION_DAYS
  assert params.resp_max_age == DEFAULT_RESP_MAX_AGE
  assert params.max_image_size == DEFAULT_MAX_IMAGE_SIZE
  assert params.max_image_pixels == DEFAULT_MAX_IMAGE_PIXELS
  assert params.origin_secret == ''


def test_from_env() -> None:
  params = XParams.from_env({
      **REQUIRED_ENV,
      'TRANSFORMED_BUCKET': 'transformed-bucket',
      'STORE_TRANSFORMED': 'True',
      'TRANSFORMED_RETENTION_DAYS': '7',
      'RESP_MAX_AGE': '3600',
      'ERROR_MAX_AGE': '0',
      'MAX_IMAGE_SIZE': '1000',
      'MAX_IMAGE_PIXELS': '500000',
      'MAX_RESPONSE_SIZE': '2000',
      'TIME_BUDGET_MS': '3000',
      'ORIGIN_SECRET': 'secret',
  })

  assert params.cache_enabled
  assert params.retention_days == 7
  assert params.resp_max_age == 3600
  assert params.error_max_age == 0
  assert params.max_image_size == 1000
  assert params.max_image_pixels == 500000
  assert params.max_response_size == 2000
  assert params.time_budget_ms == 3000
  assert params.origin_secret == 'secret'


def test_from_env_cache_disabled() -> None:
  params = XParams.from_env({
      **REQUIRED_ENV,
      'TRANSFORMED_BUCKET': 'transformed-bucket',
      'STORE_TRANSFORMED': 'false',
  })
  assert not params.cache_enabled


@pytest.mark.parametrize('missing', ['AWS_REGION', 'ORIGINAL_BUCKET'])
def test_from_env_missing(missing: str) -> None:
  env = dict(REQUIRED_ENV)
  del env[missing]

  with pytest.raises(KeyError):
    XParams.from_env(env)


@pytest.mark.parametrize(
    'name,value', [
        ('STORE_TRANSFORMED', 'maybe'),
        ('TRANSFORMED_RETENTION_DAYS', '0'),
        ('MAX_IMAGE_SIZE', 'big'),
        ('MAX_IMAGE_PIXELS', '0'),
        ('TIME_BUDGET_MS', '-1'),
    ])
def test_from_env_invalid(name: str, value: str) -> None:
  with pytest.raises(ValueError):
    XParams.from_env({**REQUIRED_ENV, name: value})


def test_params_hashable() -> None:
  assert XParams.from_env(REQUIRED_ENV) == XParams.from_env(dict(REQUIRED_ENV))
  assert len({XParams.from_env(REQUIRED_ENV), XParams.from_env(REQUIRED_ENV)}) == 1


def test_deadline_budget() -> None:
  clock = FakeClock(0.0)
  deadline = Deadline(1000, clock=clock)

  deadline.check('fetch')
  clock.now = 0.5
  deadline.check('transform')
  assert deadline.elapsed_ms() == 500

  clock.now = 1.25
  with pytest.raises(DeadlineExceededError) as excinfo:
    deadline.check('store')

  assert excinfo.value.status == 504
  assert excinfo.value.kind == 'TimeoutError'
  assert excinfo.value.context['stage'] == 'store'


def test_deadline_platform_remaining() -> None:
  clock = FakeClock()
  deadline = Deadline(10_000, remaining_ms=lambda: 1500, margin_ms=500, clock=clock)

  assert deadline.left_ms() == 1000
  clock.now += 1.0
  with pytest.raises(DeadlineExceededError):
    deadline.check('fetch')


def test_deadline_already_expired() -> None:
  deadline = Deadline(10_000, remaining_ms=lambda: 100, margin_ms=500, clock=FakeClock())
  with pytest.raises(DeadlineExceededError):
    deadline.check('fetch')
