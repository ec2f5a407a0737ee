"""轻量级 Web API（基于 Flask）

提供：配方列表、已安装包查询、触发安装/卸载、缓存状态。

启动方式: recipekit serve --port 8888
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from recipekit.core.exceptions import RecipeKitError
from recipekit.web.blueprints.cache_bp import cache_bp
from recipekit.web.blueprints.packages_bp import packages_bp, recipes_bp
from recipekit.web.responses import error

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1024 * 1024  # 1 MB，请求体只有少量 JSON 参数

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH

app.register_blueprint(recipes_bp)
app.register_blueprint(packages_bp)
app.register_blueprint(cache_bp)


# =========================================================================
# 全局 JSON 错误处理
# =========================================================================


@app.errorhandler(RecipeKitError)
def handle_recipekit_error(exc: RecipeKitError):
    """业务异常按类别映射 HTTP 状态码"""
    logger.warning("请求失败: %s", exc.describe())
    return error(exc)


@app.errorhandler(HTTPException)
def handle_http_exception(exc: HTTPException):
    """将所有 HTTP 异常统一返回 JSON"""
    return jsonify(error=exc.description, code=exc.name.upper().replace(" ", "_")), exc.code


@app.errorhandler(Exception)
def handle_generic_exception(exc: Exception):  # noqa: ARG001
    """捕获未处理异常，返回 500 JSON"""
    logger.exception("未处理的异常")
    return jsonify(error="服务器内部错误", code="INTERNAL_ERROR"), 500


def run_server(port: int = 8888, debug: bool = False, host: str = "127.0.0.1") -> None:
    logger.info("recipekit API 已启动: http://%s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
