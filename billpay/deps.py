import json
from typing import Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from billpay.errors import InvalidBody, InvalidRequest
from billpay.services.scheduler import JobScheduler

M = TypeVar("M", bound=BaseModel)


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler


def parse_rule_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequest("Invalid rule ID")


async def read_body(request: Request, model: Type[M]) -> M:
    """Parse the JSON body into ``model``.

    Malformed JSON is a 400; a well-formed body failing the schema is a 422
    carrying pydantic's issue list.
    """
    try:
        raw = await request.json()
    except ValueError:
        raise InvalidRequest("Invalid JSON body")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise InvalidBody(json.loads(exc.json(include_url=False)))
