from typing import Literal, NewType, NotRequired, ReadOnly, TypedDict

HttpPath = NewType('HttpPath', str)
S3Key = NewType('S3Key', str)
CacheKey = NewType('CacheKey', str)


class Http(TypedDict):
  method: ReadOnly[Literal['GET', 'HEAD', 'OPTIONS', 'TRACE', 'PUT', 'DELETE', 'POST', 'PATCH',
                           'CONNECT']]
  path: str
  protocol: NotRequired[str]
  sourceIp: NotRequired[str]
  userAgent: NotRequired[str]


class RequestContext(TypedDict):
  accountId: NotRequired[ReadOnly[str]]
  apiId: NotRequired[ReadOnly[str]]
  domainName: NotRequired[ReadOnly[str]]
  requestId: NotRequired[ReadOnly[str]]
  http: Http
  timeEpoch: NotRequired[int]


class FunctionUrlEvent(TypedDict):
  version: NotRequired[Literal['2.0']]
  rawPath: HttpPath
  rawQueryString: str
  headers: dict[str, str]
  queryStringParameters: NotRequired[dict[str, str]]
  requestContext: RequestContext
  isBase64Encoded: NotRequired[bool]


class ResponseResult(TypedDict):
  statusCode: int
  headers: dict[str, str]
  body: NotRequired[str]
  isBase64Encoded: NotRequired[bool]
