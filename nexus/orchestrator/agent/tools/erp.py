"""ERP tools: clients, inventory, orders, invoices and pricing.

create_order is the only destructive tool; it runs only after a human
approves the pending action.
"""

from typing import Any

from nexus.orchestrator.agent.tools.types import OrgContext, Tool, call_service, pick

_PAGE_PROPS: dict[str, Any] = {
    "page": {"type": "integer", "description": "Page number"},
    "limit": {"type": "integer", "description": "Results per page"},
}


def _id_schema(description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {"id": {"type": "string", "description": description}},
        "required": ["id"],
    }


async def list_clients_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    clients = ctx.services.require("clients")
    return await call_service(
        clients.list_clients,
        ctx.org_id,
        **pick(args, search="search", type="type", page="page", limit="limit"),
    )


async def get_client_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    clients = ctx.services.require("clients")
    return await call_service(clients.get_client, ctx.org_id, args["id"])


async def list_inventory_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    inventory = ctx.services.require("inventory")
    return await call_service(
        inventory.list_items,
        ctx.org_id,
        **pick(args, search="search", type="type", page="page", limit="limit"),
    )


async def get_inventory_item_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    inventory = ctx.services.require("inventory")
    return await call_service(inventory.get_item, ctx.org_id, args["id"])


async def list_orders_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    orders = ctx.services.require("orders")
    return await call_service(
        orders.list_orders,
        ctx.org_id,
        **pick(
            args,
            type="type",
            status="status",
            client_id="clientId",
            page="page",
            limit="limit",
        ),
    )


async def get_order_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    orders = ctx.services.require("orders")
    return await call_service(orders.get_order, ctx.org_id, args["id"])


async def create_order_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    orders = ctx.services.require("orders")
    return await call_service(orders.create_order, ctx.org_id, dict(args))


async def list_invoices_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    invoices = ctx.services.require("invoices")
    return await call_service(
        invoices.list_invoices,
        ctx.org_id,
        **pick(
            args,
            status="status",
            client_id="clientId",
            type="type",
            page="page",
            limit="limit",
        ),
    )


async def get_invoice_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    invoices = ctx.services.require("invoices")
    return await call_service(invoices.get_invoice, ctx.org_id, args["id"])


async def get_price_for_client_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    pricelists = ctx.services.require("pricelists")
    price = await call_service(
        pricelists.resolve_price_for_client,
        ctx.org_id,
        args["clientId"],
        args["inventoryId"],
    )
    return {"price": price}


_ORDER_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "inventoryId": {"type": "string", "description": "Inventory item ID"},
        "description": {"type": "string", "description": "Line item description"},
        "quantity": {"type": "number", "description": "Quantity"},
        "unitPrice": {"type": "number", "description": "Unit price"},
        "discountPct": {"type": "number", "description": "Line discount percentage"},
        "taxRate": {"type": "number", "description": "Tax rate percentage"},
    },
    "required": ["description", "quantity", "unitPrice"],
}

ERP_TOOLS: list[Tool] = [
    Tool(
        key="erp_list_clients",
        name="list_clients",
        description="List ERP clients (customers/vendors) with optional search and type filter.",
        parameters={
            "type": "object",
            "properties": {
                "search": {"type": "string", "description": "Search by client name"},
                "type": {
                    "type": "string",
                    "description": "Filter by type (customer or vendor)",
                },
                **_PAGE_PROPS,
            },
        },
        handler=list_clients_tool,
        required_permission="erp:clients:read",
    ),
    Tool(
        key="erp_get_client",
        name="get_client",
        description="Get a specific ERP client by ID.",
        parameters=_id_schema("The client ID"),
        handler=get_client_tool,
        required_permission="erp:clients:read",
    ),
    Tool(
        key="erp_list_inventory",
        name="list_inventory",
        description="List inventory items with optional search and type filter.",
        parameters={
            "type": "object",
            "properties": {
                "search": {"type": "string", "description": "Search by item name"},
                "type": {"type": "string", "description": "Filter by item type"},
                **_PAGE_PROPS,
            },
        },
        handler=list_inventory_tool,
        required_permission="erp:inventory:read",
    ),
    Tool(
        key="erp_get_inventory_item",
        name="get_inventory_item",
        description="Get a specific inventory item by ID.",
        parameters=_id_schema("The inventory item ID"),
        handler=get_inventory_item_tool,
        required_permission="erp:inventory:read",
    ),
    Tool(
        key="erp_list_orders",
        name="list_orders",
        description="List orders with optional filters for type, status, and client.",
        parameters={
            "type": "object",
            "properties": {
                "type": {"type": "string", "description": "Order type (sales or purchase)"},
                "status": {
                    "type": "string",
                    "description": "Order status (draft, confirmed, etc.)",
                },
                "clientId": {"type": "string", "description": "Filter by client ID"},
                **_PAGE_PROPS,
            },
        },
        handler=list_orders_tool,
        required_permission="erp:orders:read",
    ),
    Tool(
        key="erp_get_order",
        name="get_order",
        description="Get a specific order by ID, including its line items.",
        parameters=_id_schema("The order ID"),
        handler=get_order_tool,
        required_permission="erp:orders:read",
    ),
    Tool(
        key="erp_create_order",
        name="create_order",
        description=(
            "Create a new order. This is a destructive action that requires approval. "
            "Provide type, clientId, orderDate, and items array."
        ),
        parameters={
            "type": "object",
            "properties": {
                "type": {"type": "string", "description": "Order type: sales or purchase"},
                "clientId": {"type": "string", "description": "The client ID"},
                "orderDate": {"type": "string", "description": "Order date in ISO format"},
                "discount": {"type": "number", "description": "Order-level discount amount"},
                "items": {
                    "type": "array",
                    "description": "Array of line items",
                    "items": _ORDER_ITEM_SCHEMA,
                },
            },
            "required": ["type", "clientId", "orderDate", "items"],
        },
        handler=create_order_tool,
        required_permission="erp:orders:create",
        is_destructive=True,
    ),
    Tool(
        key="erp_list_invoices",
        name="list_invoices",
        description="List invoices with optional filters for status, client, and type.",
        parameters={
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "description": "Invoice status (draft, sent, paid, etc.)",
                },
                "clientId": {"type": "string", "description": "Filter by client ID"},
                "type": {
                    "type": "string",
                    "description": "Invoice type (invoice or credit_note)",
                },
                **_PAGE_PROPS,
            },
        },
        handler=list_invoices_tool,
        required_permission="erp:invoices:read",
    ),
    Tool(
        key="erp_get_invoice",
        name="get_invoice",
        description="Get a specific invoice by ID, including its line items.",
        parameters=_id_schema("The invoice ID"),
        handler=get_invoice_tool,
        required_permission="erp:invoices:read",
    ),
    Tool(
        key="erp_get_price_for_client",
        name="get_price_for_client",
        description=(
            "Get the price of an inventory item for a specific client, based on "
            "the client's assigned pricelist."
        ),
        parameters={
            "type": "object",
            "properties": {
                "clientId": {"type": "string", "description": "The client ID"},
                "inventoryId": {"type": "string", "description": "The inventory item ID"},
            },
            "required": ["clientId", "inventoryId"],
        },
        handler=get_price_for_client_tool,
        required_permission="erp:pricelists:read",
    ),
]
