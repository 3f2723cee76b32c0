import dataclasses
import re
from enum import Enum
from typing import Optional, Self
from urllib import parse

from imgresizer.transform.errors import ValidationError
from imgresizer.typing import HttpPath, S3Key

MAX_DIMENSION = 9999
MAX_QUALITY = 100

digits_re = re.compile(r'[0-9]+')


class ImageFormat(Enum):
  AUTO = 'auto'
  JPEG = 'jpeg'
  WEBP = 'webp'
  AVIF = 'avif'
  PNG = 'png'

  @classmethod
  def from_str(cls, s: str) -> 'ImageFormat':
    return cls(s.lower())

  def mime(self) -> str:
    if self == ImageFormat.AUTO:
      raise ValueError('auto has no MIME type')
    return f'image/{self.value}'

  def extension(self) -> str:
    if self == ImageFormat.JPEG:
      return '.jpg'
    if self == ImageFormat.AUTO:
      raise ValueError('auto has no extension')
    return f'.{self.value}'

  def default_quality(self) -> int:
    if self == ImageFormat.AVIF:
      return 60
    if self == ImageFormat.PNG:
      return MAX_QUALITY
    return 80


# Formats every requester is assumed to render.
BASELINE_FORMATS = frozenset([ImageFormat.JPEG, ImageFormat.PNG])


class AcceptHeader:
  types: frozenset[ImageFormat]

  def __init__(self, types: frozenset[ImageFormat]):
    self.types = types

  @classmethod
  def from_str(cls, accept_header: str) -> Self:
    types = set(BASELINE_FORMATS)

    if 'image/avif' in accept_header:
      types.add(ImageFormat.AVIF)

    if 'image/webp' in accept_header:
      types.add(ImageFormat.WEBP)

    return cls(frozenset(types))

  def __eq__(self, other: object) -> bool:
    return isinstance(other, AcceptHeader) and self.types == other.types

  def __hash__(self) -> int:
    return hash(self.types)

  def __repr__(self) -> str:
    return f'AcceptHeader({sorted(t.value for t in self.types)})'


@dataclasses.dataclass(eq=True, frozen=True)
class TransformRequest:
  object_key: S3Key
  width: Optional[int] = None
  height: Optional[int] = None
  format: ImageFormat = ImageFormat.AUTO
  quality: Optional[int] = None
  accept: AcceptHeader = AcceptHeader(BASELINE_FORMATS)

  @property
  def negotiated(self) -> bool:
    return self.format == ImageFormat.AUTO


def key_from_path(path: HttpPath) -> S3Key:
  return S3Key(parse.unquote(path[1:]))


def first_value(qs: dict[str, list[str]], name: str) -> Optional[str]:
  values = qs.get(name)
  if not values:
    return None
  return values[0]


def parse_bounded_int(qs: dict[str, list[str]], name: str, upper: int) -> Optional[int]:
  s = first_value(qs, name)
  if s is None:
    return None

  if digits_re.fullmatch(s) is None:
    raise ValidationError(name, f'not an integer: {s[:16]!r}')

  # Anything longer than the bound cannot be in range; int() also refuses very long strings.
  digits = s.lstrip('0')
  if len(str(upper)) < len(digits):
    raise ValidationError(name, f'out of range [1, {upper}]: {len(digits)} digits')

  value = int(digits or '0')
  if value < 1 or upper < value:
    raise ValidationError(name, f'out of range [1, {upper}]: {value}')

  return value


def parse_format(qs: dict[str, list[str]]) -> ImageFormat:
  s = first_value(qs, 'format')
  if s is None:
    return ImageFormat.AUTO

  try:
    return ImageFormat.from_str(s)
  except ValueError:
    raise ValidationError('format', f'unknown format: {s!r}')


def validate(path: HttpPath, qs: dict[str, list[str]], accept_header: str) -> TransformRequest:
  """Builds a TransformRequest from the request parts.

  ``qs`` is what ``urllib.parse.parse_qs(..., keep_blank_values=True)``
  returns. Raises ValidationError naming the first offending field; no I/O
  happens here.
  """
  key = key_from_path(path)
  if key == '' or key.endswith('/'):
    raise ValidationError('key', f'not an object key: {path!r}')

  return TransformRequest(
      object_key=key,
      width=parse_bounded_int(qs, 'width', MAX_DIMENSION),
      height=parse_bounded_int(qs, 'height', MAX_DIMENSION),
      format=parse_format(qs),
      quality=parse_bounded_int(qs, 'quality', MAX_QUALITY),
      accept=AcceptHeader.from_str(accept_header))
