# Overview: Flask API routes for the dashboard; headline figures and chart series as JSON.

from flask import Blueprint, request

from ..services import reporting_service
from ..decorators import require_actor, json_errors

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/overview")
@require_actor
@json_errors
def overview():
    return reporting_service.dashboard_overview()


@dashboard_bp.get("/sales-chart")
@require_actor
@json_errors
def sales_chart():
    """Query params: period (7d|30d|90d|1y), type (sales|purchases)."""
    return reporting_service.sales_chart(
        period=request.args.get("period", "30d"),
        chart_type=request.args.get("type", "sales"),
    )
