"""源码缓存 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response

from recipekit.web.responses import ok

cache_bp = Blueprint("cache", __name__, url_prefix="/api/cache")


def _cache():  # type: ignore[no-untyped-def]
    from recipekit.services.container import get_container
    return get_container().cache


@cache_bp.route("", methods=["GET"])
def list_entries() -> Response:
    store = _cache()
    entries = [
        {
            "digest": e.digest.key,
            "size": e.size,
            "filename": e.filename,
            "url": e.url,
            "fetched_at": e.fetched_at,
        }
        for e in store.entries()
    ]
    return ok({
        "entries": entries,
        "total_size": store.total_size(),
        "max_bytes": store.max_bytes,
    })
