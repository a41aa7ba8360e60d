"""REST blueprints and the request/response helpers they share."""

import re

from flask import jsonify, request

from vibelink.errors import ValidationError


EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def ok(data=None, status=200, **extra):
    body = {'success': True}
    if data is not None:
        body['data'] = data
    body.update(extra)
    return jsonify(body), status


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def int_arg(name: str, default: int, minimum: int = 1, maximum: int = 100) -> int:
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f'{name} must be an integer')
    if not minimum <= value <= maximum:
        raise ValidationError(f'{name} must be between {minimum} and {maximum}')
    return value
