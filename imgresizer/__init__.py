from pathlib import Path

VERSION_FILE = Path(__file__).resolve().parent.parent / 'VERSION'


def get_version() -> str:
  """Returns the release recorded in the top-level VERSION file, e.g. ``1.0``."""
  return VERSION_FILE.read_text().strip()


version = get_version()
