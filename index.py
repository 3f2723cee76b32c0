from aws_lambda_powertools.utilities.typing import LambdaContext

from imgresizer.transform import index as transformer
from imgresizer.typing import FunctionUrlEvent, ResponseResult


def transform_lambda_handler(
    event: FunctionUrlEvent,
    context: LambdaContext,
) -> ResponseResult:
  # # For debugging
  # print('event:')
  # print(json.dumps(event))

  ret = transformer.lambda_main(event, context.get_remaining_time_in_millis)

  # # For debugging
  # print('return:')
  # print(json.dumps({k: v for k, v in ret.items() if k != 'body'}))

  return ret
