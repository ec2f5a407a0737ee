"""Web 层统一响应辅助函数

消除各 Blueprint 中重复的 jsonify(error=...), 4xx/5xx 模式。
"""

from __future__ import annotations

from flask import Response, jsonify

from recipekit.core.exceptions import (
    Cancelled,
    DependencyError,
    FetchError,
    IntegrityError,
    RecipeKitError,
    RecipeNotFoundError,
    StateError,
    ValidationError,
)

# 异常类别 → HTTP 状态码（按顺序匹配，子类在前）
_STATUS: list[tuple[type[RecipeKitError], int]] = [
    (RecipeNotFoundError, 404),
    (ValidationError, 400),
    (DependencyError, 409),
    (StateError, 409),
    (Cancelled, 409),
    (IntegrityError, 422),
    (FetchError, 502),
]


def ok(data: dict, status: int = 200) -> tuple[Response, int] | Response:
    """成功响应"""
    if status == 200:
        return jsonify(data)
    return jsonify(data), status


def not_found(resource: str) -> tuple[Response, int]:
    """资源不存在"""
    return jsonify(error=f"{resource}不存在", code="NOT_FOUND"), 404


def bad_request(message: str) -> tuple[Response, int]:
    """请求参数错误"""
    return jsonify(error=message, code="BAD_REQUEST"), 400


def error(exc: RecipeKitError) -> tuple[Response, int]:
    """业务异常 → {error, code, recipe, stage}"""
    status = next((s for cls, s in _STATUS if isinstance(exc, cls)), 500)
    return jsonify(
        error=str(exc), code=exc.code, recipe=exc.recipe, stage=exc.stage,
    ), status
