"""CRM tools: contact and company lookups."""

from typing import Any

from nexus.orchestrator.agent.tools.types import OrgContext, Tool, call_service, pick

_PAGE_PROPS: dict[str, Any] = {
    "page": {"type": "integer", "description": "Page number (default 1)"},
    "limit": {"type": "integer", "description": "Results per page (default 25, max 100)"},
}


async def search_contacts_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    contacts = ctx.services.require("contacts")
    filters = pick(args, status="status", company_id="companyId")
    return await call_service(
        contacts.list_contacts,
        ctx.org_id,
        filter=filters,
        **pick(args, search="search", page="page", limit="limit"),
    )


async def get_contact_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    contacts = ctx.services.require("contacts")
    return await call_service(contacts.get_contact, ctx.org_id, args["id"])


async def search_companies_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    companies = ctx.services.require("companies")
    return await call_service(
        companies.list_companies,
        ctx.org_id,
        **pick(args, search="search", page="page", limit="limit"),
    )


async def get_company_tool(ctx: OrgContext, args: dict[str, Any]) -> Any:
    companies = ctx.services.require("companies")
    return await call_service(companies.get_company, ctx.org_id, args["id"])


CRM_TOOLS: list[Tool] = [
    Tool(
        key="crm_search_contacts",
        name="search_contacts",
        description=(
            "Search for contacts in the CRM by name, email, status, or company. "
            "Returns a paginated list."
        ),
        parameters={
            "type": "object",
            "properties": {
                "search": {
                    "type": "string",
                    "description": "Search term to match against name or email",
                },
                "status": {
                    "type": "string",
                    "description": "Filter by status (e.g., active, lead)",
                },
                "companyId": {"type": "string", "description": "Filter by company ID"},
                **_PAGE_PROPS,
            },
        },
        handler=search_contacts_tool,
        required_permission="crm:contacts:read",
    ),
    Tool(
        key="crm_get_contact",
        name="get_contact",
        description="Get a specific contact by their ID. Returns full contact details.",
        parameters={
            "type": "object",
            "properties": {"id": {"type": "string", "description": "The contact ID"}},
            "required": ["id"],
        },
        handler=get_contact_tool,
        required_permission="crm:contacts:read",
    ),
    Tool(
        key="crm_search_companies",
        name="search_companies",
        description="Search for companies in the CRM by name. Returns a paginated list.",
        parameters={
            "type": "object",
            "properties": {
                "search": {
                    "type": "string",
                    "description": "Search term to match against company name",
                },
                **_PAGE_PROPS,
            },
        },
        handler=search_companies_tool,
        required_permission="crm:companies:read",
    ),
    Tool(
        key="crm_get_company",
        name="get_company",
        description="Get a specific company by its ID. Returns full company details.",
        parameters={
            "type": "object",
            "properties": {"id": {"type": "string", "description": "The company ID"}},
            "required": ["id"],
        },
        handler=get_company_tool,
        required_permission="crm:companies:read",
    ),
]
