"""Analytics tools over ERP and CRM data.

These tools set emit_result so the chat UI can render charts from the raw
arguments and result carried on tool-execution events.
"""

from typing import Any

from nexus.orchestrator.agent.tools.types import OrgContext, Tool, call_service, pick

_DATE_RANGE = {"start_date": "startDate", "end_date": "endDate"}


async def revenue_analytics_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    svc = ctx.services.require("erp_analytics")
    return await call_service(
        svc.revenue_analytics,
        ctx.org_id,
        **pick(
            args,
            group_by="groupBy",
            client_id="clientId",
            limit="limit",
            sort_direction="sortDirection",
            **_DATE_RANGE,
        ),
    )


async def top_products_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    svc = ctx.services.require("erp_analytics")
    return await call_service(
        svc.top_products,
        ctx.org_id,
        **pick(args, metric="metric", limit="limit", **_DATE_RANGE),
    )


async def invoice_analytics_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    svc = ctx.services.require("erp_analytics")
    return await call_service(svc.invoice_analytics, ctx.org_id, mode=args["mode"])


async def payment_analytics_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    svc = ctx.services.require("erp_analytics")
    return await call_service(
        svc.payment_analytics,
        ctx.org_id,
        **pick(args, group_by="groupBy", client_id="clientId", limit="limit", **_DATE_RANGE),
    )


async def inventory_analytics_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    svc = ctx.services.require("erp_analytics")
    return await call_service(
        svc.inventory_analytics,
        ctx.org_id,
        mode=args["mode"],
        **pick(args, limit="limit"),
    )


async def deal_pipeline_analytics_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    svc = ctx.services.require("crm_analytics")
    return await call_service(
        svc.deal_pipeline_analytics,
        ctx.org_id,
        **pick(
            args,
            pipeline_name="pipelineName",
            owner_id="ownerId",
            expected_close_start="expectedCloseStart",
            expected_close_end="expectedCloseEnd",
            include_won="includeWon",
            include_lost="includeLost",
        ),
    )


ANALYTICS_TOOLS: list[Tool] = [
    Tool(
        key="erp_revenue_analytics",
        name="revenue_analytics",
        description=(
            "Analyze sales order revenue with grouping by client, month, or quarter. "
            "Supports date range filtering, client filtering, and sorting. "
            "Excludes draft and cancelled orders."
        ),
        parameters={
            "type": "object",
            "properties": {
                "groupBy": {
                    "type": "string",
                    "enum": ["client", "month", "quarter"],
                    "description": "Group results by: client, month, or quarter (default: month)",
                },
                "startDate": {
                    "type": "string",
                    "description": "Start date in ISO format (e.g. 2024-01-01)",
                },
                "endDate": {
                    "type": "string",
                    "description": "End date in ISO format (e.g. 2024-12-31)",
                },
                "clientId": {
                    "type": "string",
                    "description": "Filter by a specific client ID",
                },
                "limit": {
                    "type": "integer",
                    "description": "Max results to return (default 50, max 200)",
                },
                "sortDirection": {
                    "type": "string",
                    "enum": ["asc", "desc"],
                    "description": "Sort direction: asc or desc (default: desc)",
                },
            },
        },
        handler=revenue_analytics_tool,
        required_permission="erp:orders:read",
        emit_result=True,
    ),
    Tool(
        key="erp_top_products",
        name="top_products",
        description=(
            "Get top-selling products ranked by quantity sold or revenue within a "
            "date range. Returns product name, SKU, total quantity, total revenue, "
            "and order count."
        ),
        parameters={
            "type": "object",
            "properties": {
                "startDate": {"type": "string", "description": "Start date in ISO format"},
                "endDate": {"type": "string", "description": "End date in ISO format"},
                "metric": {
                    "type": "string",
                    "enum": ["quantity", "revenue"],
                    "description": "Rank by: quantity or revenue (default: quantity)",
                },
                "limit": {
                    "type": "integer",
                    "description": "Number of top products to return (default 10, max 100)",
                },
            },
            "required": ["startDate", "endDate"],
        },
        handler=top_products_tool,
        required_permission="erp:orders:read",
        emit_result=True,
    ),
    Tool(
        key="erp_invoice_analytics",
        name="invoice_analytics",
        description=(
            'Analyze invoices in three modes: "outstanding" returns total unpaid '
            'balance, "overdue" lists invoices past due date with days overdue, '
            '"status_summary" groups invoices by status with counts and totals.'
        ),
        parameters={
            "type": "object",
            "properties": {
                "mode": {
                    "type": "string",
                    "enum": ["outstanding", "overdue", "status_summary"],
                    "description": "Analysis mode",
                },
            },
            "required": ["mode"],
        },
        handler=invoice_analytics_tool,
        required_permission="erp:invoices:read",
        emit_result=True,
    ),
    Tool(
        key="erp_payment_analytics",
        name="payment_analytics",
        description=(
            "Analyze completed payments grouped by payment method, month, or client. "
            "Supports date range and client filtering."
        ),
        parameters={
            "type": "object",
            "properties": {
                "groupBy": {
                    "type": "string",
                    "enum": ["method", "month", "client"],
                    "description": "Group results by: method, month, or client (default: method)",
                },
                "startDate": {"type": "string", "description": "Start date in ISO format"},
                "endDate": {"type": "string", "description": "End date in ISO format"},
                "clientId": {
                    "type": "string",
                    "description": "Filter by a specific client ID",
                },
                "limit": {
                    "type": "integer",
                    "description": "Max results to return (default 50, max 200)",
                },
            },
        },
        handler=payment_analytics_tool,
        required_permission="erp:invoices:read",
        emit_result=True,
    ),
    Tool(
        key="erp_inventory_analytics",
        name="inventory_analytics",
        description=(
            'Analyze inventory in three modes: "low_stock" lists items at or below '
            'reorder level, "valuation" shows total stock value at cost and retail, '
            '"top_by_value" ranks items by cost value on hand.'
        ),
        parameters={
            "type": "object",
            "properties": {
                "mode": {
                    "type": "string",
                    "enum": ["low_stock", "valuation", "top_by_value"],
                    "description": "Analysis mode",
                },
                "limit": {
                    "type": "integer",
                    "description": "Max items for top_by_value mode (default 10, max 100)",
                },
            },
            "required": ["mode"],
        },
        handler=inventory_analytics_tool,
        required_permission="erp:inventory:read",
        emit_result=True,
    ),
    Tool(
        key="crm_deal_analytics",
        name="deal_pipeline_analytics",
        description=(
            "Get deal pipeline analytics showing deals grouped by stage with counts, "
            "total value, and weighted value (value * probability). Supports "
            "filtering by pipeline, owner, and expected close date range."
        ),
        parameters={
            "type": "object",
            "properties": {
                "pipelineName": {"type": "string", "description": "Filter by pipeline name"},
                "ownerId": {"type": "string", "description": "Filter by deal owner ID"},
                "expectedCloseStart": {
                    "type": "string",
                    "description": "Expected close start date in ISO format",
                },
                "expectedCloseEnd": {
                    "type": "string",
                    "description": "Expected close end date in ISO format",
                },
                "includeWon": {
                    "type": "boolean",
                    "description": "Include won stages (default: true)",
                },
                "includeLost": {
                    "type": "boolean",
                    "description": "Include lost stages (default: true)",
                },
            },
        },
        handler=deal_pipeline_analytics_tool,
        required_permission="crm:contacts:read",
        emit_result=True,
    ),
]
