import logging
from logging import Logger
from typing import Callable

import pyvips
import pytest
from pyvips import Image  # type: ignore

from imgresizer.log import MyJsonFormatter


def synthesize(width: int, height: int, suffix: str = '.jpg', alpha: bool = False) -> bytes:
  # A gradient rather than a flat fill so encoders have something to compress.
  image = (Image.xyz(width, height) % 256).cast('uchar').bandjoin_const([128])
  if alpha:
    image = image.bandjoin_const([200])
  return image.copy(interpretation='srgb').write_to_buffer(suffix)


def can_encode(suffix: str) -> bool:
  try:
    Image.black(16, 16, bands=3).write_to_buffer(suffix)
  except pyvips.Error:
    return False
  return True


@pytest.fixture
def make_image() -> Callable[..., bytes]:
  return synthesize


@pytest.fixture
def require_avif() -> None:
  if not can_encode('.avif'):
    pytest.skip('libvips has no AVIF encoder')


@pytest.fixture
def require_webp() -> None:
  if not can_encode('.webp'):
    pytest.skip('libvips has no WebP encoder')


@pytest.fixture
def logger() -> Logger:
  log = logging.getLogger('imgresizer.test')
  if not log.handlers:
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(MyJsonFormatter())
    log_handler.setLevel(logging.DEBUG)
    log.addHandler(log_handler)
    log.setLevel(logging.DEBUG)
  return log
