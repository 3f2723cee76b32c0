import datetime
import logging
import os
import sys
from logging import Logger
from typing import Any, Mapping

from pythonjsonlogger.jsonlogger import JsonFormatter

import imgresizer

LOG_LEVEL_ENV = 'LOG_LEVEL'
DEFAULT_LOG_LEVEL = logging.DEBUG

# Libraries that are chatty at DEBUG and rarely useful in CloudWatch.
QUIET_LOGGERS = {
    'boto3': logging.WARNING,
    'botocore': logging.WARNING,
    's3transfer': logging.WARNING,
    'urllib3': logging.INFO,
    'pyvips': logging.WARNING,
}


class MyJsonFormatter(JsonFormatter):

  def __init__(self) -> None:
    super().__init__(json_ensure_ascii=False)

  def add_fields(self, log_record: Any, record: Any, message_dict: Any) -> None:
    created = datetime.datetime.fromtimestamp(record.created, datetime.UTC)
    log_record['_ts'] = created.strftime('%Y-%m-%dT%H:%M:%S.%fZ')
    log_record['level'] = record.levelname
    log_record['logger'] = record.name
    log_record['version'] = imgresizer.version

    super().add_fields(log_record, record, message_dict)


def level_from_env(env: Mapping[str, str]) -> int:
  name = env.get(LOG_LEVEL_ENV, '').strip().upper()
  return logging.getLevelNamesMapping().get(name, DEFAULT_LOG_LEVEL)


def init_logging(name: str, env: Mapping[str, str] = os.environ) -> Logger:
  # Lambda's runtime installs its own root handler; drop it so records are not printed twice.
  # https://stackoverflow.com/a/11548754/1160341
  root = logging.getLogger()
  for h in list(root.handlers):
    root.removeHandler(h)

  for quiet, level in QUIET_LOGGERS.items():
    logging.getLogger(quiet).setLevel(level)

  log = logging.getLogger(name)
  log.setLevel(level_from_env(env))
  if not log.handlers:
    log_handler = logging.StreamHandler(sys.stderr)
    log_handler.setFormatter(MyJsonFormatter())
    log.addHandler(log_handler)
  log.propagate = False

  return log
