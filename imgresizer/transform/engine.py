import dataclasses
import datetime
from typing import Any, Optional

import pyvips
from dateutil.relativedelta import relativedelta
from pyvips import Image  # type: ignore

from imgresizer.transform.config import DEFAULT_MAX_IMAGE_PIXELS
from imgresizer.transform.errors import (
    DecodeError,
    PayloadTooLargeError,
    UnsupportedFormatError
)
from imgresizer.transform.request import (
    MAX_QUALITY,
    ImageFormat,
    TransformRequest
)
from imgresizer.transform.store import OriginalImage
from imgresizer.typing import CacheKey, S3Key

JPEG_BACKGROUND = 255.0
PNG_COMPRESSION = 6

# Most compact first.
NEGOTIATION_ORDER = [ImageFormat.AVIF, ImageFormat.WEBP]

# EXIF orientations that turn the image by 90 or 270 degrees.
SWAPPING_ORIENTATIONS = [5, 6, 7, 8]


@dataclasses.dataclass(eq=True, frozen=True)
class Size:
  width: int
  height: int

  @classmethod
  def from_image(cls, image: Image) -> 'Size':
    return cls(image.get('width'), image.get('height'))


@dataclasses.dataclass(frozen=True)
class TransformedImage:
  data: bytes
  output_format: ImageFormat
  width: int
  height: int
  quality: int
  cache_key: CacheKey
  expires_at: datetime.datetime
  negotiated: bool

  @property
  def byte_length(self) -> int:
    return len(self.data)

  @property
  def content_type(self) -> str:
    return self.output_format.mime()


def encodable_formats() -> frozenset[ImageFormat]:
  suffixes = set(pyvips.get_suffixes())
  return frozenset(f for f in ImageFormat if f != ImageFormat.AUTO and f.extension() in suffixes)


def choose_preferred_format(
    capabilities: frozenset[ImageFormat],
    source_format: ImageFormat,
) -> ImageFormat:
  for f in NEGOTIATION_ORDER:
    if f in capabilities:
      return f
  return source_format


def scale_round(value: int, numerator: int, denominator: int) -> int:
  # value * numerator / denominator rounded half up, never below one pixel.
  return max(1, (2 * value * numerator + denominator) // (2 * denominator))


def calc_target_size(native: Size, width: Optional[int], height: Optional[int]) -> Size:
  match (width, height):
    case (None, None):
      return native
    case (int() as w, None):
      return Size(w, scale_round(w, native.height, native.width))
    case (None, int() as h):
      return Size(scale_round(h, native.width, native.height), h)
    case (int() as w, int() as h):
      return Size(w, h)
    case _:
      raise Exception('system error')


def calc_cache_key(
    object_key: S3Key,
    width: int,
    height: int,
    output_format: ImageFormat,
    quality: int,
) -> CacheKey:
  return CacheKey(
      f'{object_key}/format={output_format.value},height={height},quality={quality},width={width}')


def detect_source_format(image: Image) -> Optional[ImageFormat]:
  loader: str = image.get('vips-loader')
  if loader.startswith('jpegload'):
    return ImageFormat.JPEG
  if loader.startswith('pngload'):
    return ImageFormat.PNG
  if loader.startswith('webpload'):
    return ImageFormat.WEBP
  if loader.startswith('heifload') and image.get_typeof('heif-compression') != 0:
    if image.get('heif-compression') == 'av1':
      return ImageFormat.AVIF
  return None


def load_header(data: bytes) -> Image:
  # Only the header is read here; pixels stay undecoded.
  try:
    return Image.new_from_buffer(data, '')
  except pyvips.Error as e:
    raise DecodeError('failed to decode original', reason=str(e).strip())


def oriented_size(header: Image) -> Size:
  """Size after EXIF auto-rotation."""
  size = Size.from_image(header)
  if header.get_typeof('orientation') != 0 and header.get('orientation') in SWAPPING_ORIENTATIONS:
    return Size(size.height, size.width)
  return size


def check_pixels(native: Size, max_pixels: int) -> None:
  if max_pixels < native.width * native.height:
    raise PayloadTooLargeError(
        'original exceeds pixel limit',
        width=native.width,
        height=native.height,
        limit=max_pixels)


def load_pixels(data: bytes, header: Image, native: Size, target: Size) -> Image:
  try:
    if target == native:
      image = header.autorot()
    else:
      # libvips shrinks JPEG and WebP on load, and auto-rotates.
      image = Image.thumbnail_buffer(data, target.width, height=target.height, size='force')
    # Pixels are decoded lazily; truncated or corrupt data would otherwise
    # surface only when encoding.
    return image.copy_memory()
  except pyvips.Error as e:
    raise DecodeError('failed to decode original', reason=str(e).strip())


def resolve_format(
    request: TransformRequest,
    source_format: Optional[ImageFormat],
    has_alpha: bool,
    encodable: frozenset[ImageFormat],
) -> ImageFormat:
  if request.format != ImageFormat.AUTO:
    if request.format not in encodable:
      raise UnsupportedFormatError(
          f'cannot encode {request.format.value}', format=request.format.value)
    return request.format

  if source_format is None or source_format not in encodable:
    source_format = ImageFormat.PNG if has_alpha else ImageFormat.JPEG

  return choose_preferred_format(request.accept.types & encodable, source_format)


def encode_options(output_format: ImageFormat, quality: int) -> dict[str, Any]:
  match output_format:
    case ImageFormat.JPEG:
      return {'Q': quality, 'strip': True, 'optimize_coding': True}
    case ImageFormat.WEBP:
      return {'Q': quality, 'strip': True}
    case ImageFormat.AVIF:
      return {'Q': quality, 'strip': True}
    case ImageFormat.PNG:
      if quality < MAX_QUALITY:
        return {'Q': quality, 'palette': True, 'strip': True, 'compression': PNG_COMPRESSION}
      return {'strip': True, 'compression': PNG_COMPRESSION}
    case _:
      raise Exception('system error')


def encode(image: Image, output_format: ImageFormat, quality: int) -> bytes:
  if output_format == ImageFormat.JPEG and image.hasalpha():
    image = image.flatten(background=[JPEG_BACKGROUND] * (image.bands - 1))

  try:
    return image.write_to_buffer(output_format.extension(), **encode_options(output_format, quality))
  except pyvips.Error as e:
    raise UnsupportedFormatError(
        f'failed to encode {output_format.value}',
        format=output_format.value,
        reason=str(e).strip())


def transform(
    original: OriginalImage,
    request: TransformRequest,
    retention_days: int,
    now: datetime.datetime,
    encodable: Optional[frozenset[ImageFormat]] = None,
    max_pixels: int = DEFAULT_MAX_IMAGE_PIXELS,
) -> TransformedImage:
  """Decodes, resizes and re-encodes an original.

  The output bytes depend only on ``original.data`` and ``request``;
  ``now`` only feeds ``expires_at``. Originals with more than ``max_pixels``
  pixels are rejected before any pixel is decoded.
  """
  if encodable is None:
    encodable = encodable_formats()

  header = load_header(original.data)
  native = oriented_size(header)
  check_pixels(native, max_pixels)

  source_format = detect_source_format(header)
  output_format = resolve_format(request, source_format, header.hasalpha(), encodable)
  quality = request.quality if request.quality is not None else output_format.default_quality()

  target = calc_target_size(native, request.width, request.height)
  image = load_pixels(original.data, header, native, target)

  data = encode(image, output_format, quality)

  return TransformedImage(
      data=data,
      output_format=output_format,
      width=target.width,
      height=target.height,
      quality=quality,
      cache_key=calc_cache_key(
          request.object_key, target.width, target.height, output_format, quality),
      expires_at=now + relativedelta(days=retention_days),
      negotiated=request.negotiated)
