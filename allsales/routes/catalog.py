"""
Catalog Routes - JSON endpoints over the search and update services
"""

from flask import Blueprint, request

from allsales.api_responses import not_found_response, paginated_response, success_response
from allsales.constants import RUN_KIND_SYNC_NEW, RUN_KIND_UPDATE_ALL
from allsales.metrics import metrics_response
from allsales.services import get_services
from allsales.utils import parse_bool

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")
metrics_bp = Blueprint("metrics", __name__)


@catalog_bp.route("/games")
def search_games():
    """Filtered, paginated catalog search"""
    search = get_services().search
    params = request.args.to_dict()
    page = params.pop("page", None)
    page_size = params.pop("page_size", params.pop("pageSize", None))
    include_filter_options = parse_bool(
        params.pop("include_filter_options", params.pop("includeFilterOptions", None)), False
    )

    result = search.search(params, page=page, page_size=page_size)
    extra = {"filter_options": search.get_filter_options()} if include_filter_options else None
    return paginated_response(result, extra)


@catalog_bp.route("/games/filters")
def get_filter_options():
    return success_response(get_services().search.get_filter_options())


@catalog_bp.route("/games/<int:external_id>")
def get_game(external_id):
    """Stored record, refreshed from Steam first when ?refresh=true"""
    services = get_services()
    if parse_bool(request.args.get("refresh"), False):
        result = services.updates.refresh_record(external_id)
        if result is None or result["record"] is None:
            return not_found_response("Game", external_id)
        return success_response(result["record"], message=f"Refresh outcome: {result['outcome']}")

    record = services.search.get_record(external_id)
    if record is None:
        return not_found_response("Game", external_id)
    return success_response(record)


@catalog_bp.route("/stored-games")
def get_stored_games():
    """Raw listing of stored records, unknown classifications included"""
    args = request.args
    result = get_services().search.list_stored(
        page=args.get("page"),
        page_size=args.get("page_size", args.get("pageSize")),
        classification=args.get("type") or args.get("classification"),
        with_type=args.get("with_type", args.get("withType")),
    )
    return paginated_response(result)


@catalog_bp.route("/stats")
def get_stats():
    return success_response(get_services().search.get_stats())


@catalog_bp.route("/differences")
def check_differences():
    return success_response(get_services().updates.check_differences())


@catalog_bp.route("/sync", methods=["POST"])
def sync_new_games():
    """Store apps that appeared on Steam since the last run"""
    result = get_services().updates.run_exclusive(RUN_KIND_SYNC_NEW, trigger="manual")
    return success_response(result, message="Sync completed")


@catalog_bp.route("/update", methods=["POST"])
def update_all_games():
    """Sync new apps and refresh every stored record"""
    result = get_services().updates.run_exclusive(RUN_KIND_UPDATE_ALL, trigger="manual")
    return success_response(result, message="Update completed")


@catalog_bp.route("/blacklist")
def list_blacklist():
    services = get_services()
    page, page_size = services.search.resolve_page(
        request.args.get("page"), request.args.get("page_size", request.args.get("pageSize"))
    )
    entries, total = services.blacklist.list_entries(page, page_size)
    return paginated_response({"items": entries, "pagination": services.search.pagination(page, page_size, total)})


@catalog_bp.route("/blacklist/<int:external_id>", methods=["DELETE"])
def remove_from_blacklist(external_id):
    if not get_services().blacklist.remove(external_id):
        return not_found_response("Blacklist entry", external_id)
    return success_response({"external_id": external_id}, message="Removed from blacklist")


@metrics_bp.route("/metrics")
def metrics():
    return metrics_response()
