"""Customer tools (tblclients, tblcontacts)."""

from __future__ import annotations

import logging
from datetime import date
from typing import Literal, Optional

from pydantic import Field

from ..db.query_builder import WhereBuilder, like
from ..exceptions import NotFoundError, ValidationError
from .base import PageInput, Tool, ToolInput, ToolResponse

logger = logging.getLogger(__name__)

CUSTOMER_COLUMNS = """
    c.userid, c.company, c.vat, c.phonenumber, c.city, c.country,
    c.website, c.datecreated, c.active
"""

SEARCHABLE_FIELDS = ("company", "vat", "phonenumber", "city", "website")


# ============================================
# Input models
# ============================================

class GetCustomersInput(PageInput):
    active: Optional[bool] = Field(None, description="Only active (true) or inactive (false) customers")
    search: Optional[str] = Field(None, description="Search company name or VAT number")
    country: Optional[int] = Field(None, description="Country ID")
    created_from: Optional[date] = Field(None, description="Created on or after (YYYY-MM-DD)")
    created_to: Optional[date] = Field(None, description="Created on or before (YYYY-MM-DD)")


class CustomerIdInput(ToolInput):
    client_id: int = Field(..., gt=0, description="Customer ID")


class CreateCustomerInput(ToolInput):
    company: str = Field(..., min_length=1, max_length=191, description="Company name")
    vat: str = ""
    phonenumber: str = ""
    website: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: int = Field(0, ge=0, description="Country ID")
    active: bool = True


class UpdateCustomerInput(ToolInput):
    client_id: int = Field(..., gt=0, description="Customer ID")
    company: Optional[str] = Field(None, min_length=1, max_length=191)
    vat: Optional[str] = None
    phonenumber: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[int] = Field(None, ge=0)
    active: Optional[bool] = None


class SearchCustomersInput(ToolInput):
    query: str = Field(..., min_length=1, max_length=100, description="Search term")
    fields: list[Literal["company", "vat", "phonenumber", "city", "website"]] = Field(
        default_factory=lambda: ["company", "vat"],
        description="Columns to search",
    )
    limit: int = Field(20, ge=1, le=100)


# ============================================
# Handlers
# ============================================

async def get_customers(args: GetCustomersInput, db) -> ToolResponse:
    where = WhereBuilder()
    if args.active is not None:
        where.add("c.active = {}", 1 if args.active else 0)
    where.add_if(args.search, "(c.company ILIKE {0} OR c.vat ILIKE {0})", like(args.search or ""))
    where.add_if(args.country, "c.country = {}", args.country)
    where.add_if(args.created_from, "c.datecreated::date >= {}", args.created_from)
    where.add_if(args.created_to, "c.datecreated::date <= {}", args.created_to)

    page = await db.query_with_limit(
        f"""
        SELECT {CUSTOMER_COLUMNS},
               (SELECT COUNT(*) FROM tblinvoices i WHERE i.clientid = c.userid) AS total_invoices,
               (SELECT COUNT(*) FROM tblprojects p WHERE p.clientid = c.userid) AS total_projects
        FROM tblclients c
        {where.clause}
        ORDER BY c.company ASC
        """,
        where.params,
        count_sql=f"SELECT COUNT(*) FROM tblclients c {where.clause}",
        limit=args.limit,
        offset=args.offset,
    )
    return ToolResponse.success({
        "customers": page.data,
        "pagination": {
            "limit": page.limit,
            "offset": page.offset,
            "count": len(page.data),
            "total": page.total,
            "has_more": page.has_more,
        },
    })


async def get_customer(args: CustomerIdInput, db) -> ToolResponse:
    customer = await db.query_one(
        """
        SELECT c.*,
               (SELECT COUNT(*) FROM tblinvoices WHERE clientid = c.userid) AS total_invoices,
               (SELECT COALESCE(SUM(total), 0) FROM tblinvoices
                 WHERE clientid = c.userid AND status = 2) AS total_paid,
               (SELECT COUNT(*) FROM tblprojects WHERE clientid = c.userid) AS total_projects,
               (SELECT MAX(date) FROM tblinvoices WHERE clientid = c.userid) AS last_invoice_date
        FROM tblclients c
        WHERE c.userid = $1
        """,
        [args.client_id],
    )
    if customer is None:
        raise NotFoundError("Customer", args.client_id)

    contacts = await db.query(
        """
        SELECT id, firstname, lastname, email, phonenumber, title, is_primary, active
        FROM tblcontacts
        WHERE userid = $1
        ORDER BY is_primary DESC, id
        """,
        [args.client_id],
    )
    return ToolResponse.success({"customer": customer, "contacts": contacts})


async def create_customer(args: CreateCustomerInput, db) -> ToolResponse:
    client_id = await db.execute_insert(
        """
        INSERT INTO tblclients (
            company, vat, phonenumber, website, address, city, state, zip,
            country, active, datecreated, addedfrom
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, NOW(), 0)
        RETURNING userid
        """,
        [
            args.company,
            args.vat,
            args.phonenumber,
            args.website,
            args.address,
            args.city,
            args.state,
            args.zip,
            args.country,
            1 if args.active else 0,
        ],
    )
    logger.info(f"Customer created: {client_id}")

    customer = await db.query_one("SELECT * FROM tblclients WHERE userid = $1", [client_id])
    return ToolResponse.success({
        "success": True,
        "message": "Customer created successfully",
        "client_id": client_id,
        "customer": customer,
    })


async def update_customer(args: UpdateCustomerInput, db) -> ToolResponse:
    changes = args.model_dump(exclude_none=True, exclude={"client_id"})
    if not changes:
        raise ValidationError("No fields to update")
    if "active" in changes:
        changes["active"] = 1 if changes["active"] else 0

    values = WhereBuilder()
    assignments = ", ".join(f"{column} = {values.param(value)}" for column, value in changes.items())
    updated = await db.execute(
        f"UPDATE tblclients SET {assignments} WHERE userid = {values.param(args.client_id)}",
        values.params,
    )
    if updated == 0:
        raise NotFoundError("Customer", args.client_id)

    customer = await db.query_one("SELECT * FROM tblclients WHERE userid = $1", [args.client_id])
    return ToolResponse.success({
        "success": True,
        "message": "Customer updated successfully",
        "updated_fields": sorted(changes),
        "customer": customer,
    })


async def search_customers(args: SearchCustomersInput, db) -> ToolResponse:
    fields = [f for f in dict.fromkeys(args.fields) if f in SEARCHABLE_FIELDS] or ["company"]

    where = WhereBuilder()
    pattern = where.param(like(args.query))
    where.add_raw("(" + " OR ".join(f"c.{f} ILIKE {pattern}" for f in fields) + ")")

    results = await db.query(
        f"""
        SELECT c.userid, c.company, c.vat, c.phonenumber, c.city, c.active,
               (SELECT COUNT(*) FROM tblinvoices i WHERE i.clientid = c.userid) AS invoice_count,
               (SELECT COALESCE(SUM(i.total), 0) FROM tblinvoices i
                 WHERE i.clientid = c.userid AND i.status = 2) AS total_revenue
        FROM tblclients c
        {where.clause}
        ORDER BY c.company
        LIMIT {where.param(args.limit)}
        """,
        where.params,
    )
    return ToolResponse.success({
        "query": args.query,
        "fields_searched": fields,
        "results": results,
        "count": len(results),
    })


TOOLS: list[Tool] = [
    Tool(
        name="get_customers",
        description="List customers with filters and pagination",
        input_model=GetCustomersInput,
        handler=get_customers,
    ),
    Tool(
        name="get_customer",
        description="Get full details of one customer, including contacts",
        input_model=CustomerIdInput,
        handler=get_customer,
    ),
    Tool(
        name="create_customer",
        description="Create a new customer",
        input_model=CreateCustomerInput,
        handler=create_customer,
        read_only=False,
    ),
    Tool(
        name="update_customer",
        description="Update fields of an existing customer",
        input_model=UpdateCustomerInput,
        handler=update_customer,
        read_only=False,
    ),
    Tool(
        name="search_customers",
        description="Search customers across several columns",
        input_model=SearchCustomersInput,
        handler=search_customers,
    ),
]
