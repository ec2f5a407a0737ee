"""配方 / 已安装包 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response, request

from recipekit.web.responses import bad_request, not_found, ok

recipes_bp = Blueprint("recipes", __name__, url_prefix="/api/recipes")
packages_bp = Blueprint("packages", __name__, url_prefix="/api/packages")


def _svc():  # type: ignore[no-untyped-def]
    from recipekit.services.container import get_container
    return get_container()


@recipes_bp.route("", methods=["GET"])
def list_recipes() -> Response:
    book = _svc().recipes
    return ok({"recipes": [book.get(n).to_dict() for n in book.names()]})


@recipes_bp.route("/<name>", methods=["GET"])
def get_recipe(name: str) -> tuple[Response, int] | Response:
    book = _svc().recipes
    if name not in book:
        return not_found("配方")
    return ok({"recipe": book.get(name).to_dict()})


@packages_bp.route("", methods=["GET"])
def list_packages() -> Response:
    return ok({"packages": [p.to_dict() for p in _svc().manager.list_installed()]})


@packages_bp.route("/<name>", methods=["GET"])
def get_package(name: str) -> tuple[Response, int] | Response:
    svc = _svc()
    pkg = svc.registry.get(name)
    state = svc.manager.state_of(name)
    if pkg is None and state is None:
        return not_found("已安装包")
    last = svc.manager.last_error(name)
    return ok({
        "name": name,
        "state": state.value if state else None,
        "package": pkg.to_dict() if pkg else None,
        "error": last.describe() if last is not None and pkg is None else None,
    })


@packages_bp.route("/<name>/install", methods=["POST"])
def install(name: str) -> tuple[Response, int] | Response:
    body = request.get_json(silent=True) or {}
    if not isinstance(body, dict):
        return bad_request("请求体必须是 JSON 对象")
    report = _svc().manager.install(
        name, head=bool(body.get("head", False)), force=bool(body.get("force", False)),
    )
    return ok({
        "name": name,
        "state": report.state.value,
        "skipped": report.skipped,
        "installed": report.installed,
        "package": report.package.to_dict() if report.package else None,
        "test_failure": str(report.test_failure) if report.test_failure else None,
    })


@packages_bp.route("/<name>", methods=["DELETE"])
def uninstall(name: str) -> Response:
    force = request.args.get("force", "") in ("1", "true")
    removed = _svc().manager.uninstall(name, force=force)
    return ok({"name": name, "removed": removed})
