"""Response verification primitives for exercised endpoints."""
from __future__ import annotations

import json
import types
from typing import Annotated, Any, Callable, Union, get_args, get_origin

from pydantic import BaseModel, TypeAdapter, ValidationError

from src.generator_harness.http_context import HttpContext
from src.shared.constants import DEFAULT_ENCODING, JSON_CONTENT_TYPE
from src.shared.errors import ResponseVerificationError


async def get_response_body(context: HttpContext) -> str:
    """Rewind the response body stream and read it to the end."""
    body = context.response.body
    body.seek(0)
    return body.read().decode(DEFAULT_ENCODING)


def _check_status(context: HttpContext, expected_status_code: int) -> None:
    if context.response.status_code != expected_status_code:
        raise ResponseVerificationError(
            "status code", expected_status_code, context.response.status_code
        )


def _apply_check(check: Callable[[Any], Any], value: Any) -> None:
    # Checks may assert themselves or return a bool
    if check(value) is False:
        raise ResponseVerificationError("body predicate", "a value satisfying the check", value)


def _shape_name(shape: Any) -> str:
    return getattr(shape, "__name__", None) or repr(shape)


def _model_keys(model: type[BaseModel]) -> dict[str, tuple[str, Any]]:
    """Map lower-cased input keys of *model* to the declared key and annotation."""
    keys: dict[str, tuple[str, Any]] = {}
    for name, info in model.model_fields.items():
        key = info.validation_alias if isinstance(info.validation_alias, str) else info.alias or name
        keys.setdefault(key.lower(), (key, info.annotation))
        keys.setdefault(name.lower(), (key, info.annotation))
    return keys


def _fold_keys(value: Any, shape: Any) -> Any:
    """Rename object keys case-insensitively onto the model fields of *shape*.

    Keys that match no field are left alone so pydantic still sees them.
    """
    origin = get_origin(shape)
    if origin is Annotated:
        return _fold_keys(value, get_args(shape)[0])
    if origin is Union or origin is types.UnionType:
        members = [arg for arg in get_args(shape) if arg is not type(None)]
        return _fold_keys(value, members[0]) if len(members) == 1 else value
    if isinstance(shape, type) and issubclass(shape, BaseModel):
        if not isinstance(value, dict):
            return value
        keys = _model_keys(shape)
        folded: dict[str, Any] = {}
        for key, item in value.items():
            target, annotation = keys.get(key.lower(), (key, Any))
            folded[target] = _fold_keys(item, annotation)
        return folded
    if origin in (list, set, frozenset) and isinstance(value, list):
        args = get_args(shape)
        return [_fold_keys(item, args[0]) for item in value] if args else value
    if origin is tuple and isinstance(value, list):
        args = get_args(shape)
        if len(args) == 2 and args[1] is Ellipsis:
            return [_fold_keys(item, args[0]) for item in value]
        if len(args) == len(value):
            return [_fold_keys(item, arg) for item, arg in zip(value, args)]
        return value
    if origin is dict and isinstance(value, dict):
        args = get_args(shape)
        return {key: _fold_keys(item, args[1]) for key, item in value.items()} if args else value
    return value


def _parse_json(body: str, shape: Any) -> Any:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise ResponseVerificationError(
            "JSON body", f"a JSON document matching {_shape_name(shape)}", body
        ) from exc


async def verify_response_body(
    context: HttpContext, expected_body: str, expected_status_code: int = 200
) -> None:
    body = await get_response_body(context)
    _check_status(context, expected_status_code)
    if body != expected_body:
        raise ResponseVerificationError("body", expected_body, body)


async def verify_response_json_body(
    context: HttpContext,
    check: Callable[[Any], Any],
    shape: Any = Any,
    expected_status_code: int = 200,
) -> None:
    """Deserialize the body into *shape* with pydantic and apply *check*.

    Property names are matched case-insensitively against model fields, so a
    ``{"Message": ...}`` payload fills a ``message`` field.
    """
    body = await get_response_body(context)
    document = _parse_json(body, shape)
    try:
        value = TypeAdapter(shape).validate_python(_fold_keys(document, shape))
    except ValidationError as exc:
        raise ResponseVerificationError(
            "JSON body", f"a JSON document matching {_shape_name(shape)}", body
        ) from exc
    _check_status(context, expected_status_code)
    _apply_check(check, value)


async def verify_response_json_node(
    context: HttpContext,
    check: Callable[[Any], Any],
    expected_status_code: int = 200,
    expected_content_type: str = JSON_CONTENT_TYPE,
) -> None:
    """Parse the body as a JSON document and apply *check* to it."""
    body = await get_response_body(context)
    node = _parse_json(body, Any)
    if context.response.content_type != expected_content_type:
        raise ResponseVerificationError(
            "content type", expected_content_type, context.response.content_type
        )
    _check_status(context, expected_status_code)
    _apply_check(check, node)
