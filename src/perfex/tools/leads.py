"""Lead tools (tblleads, tblleads_status, tblleads_sources)."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from pydantic import Field

from ..db.query_builder import WhereBuilder, like
from ..exceptions import NotFoundError, ValidationError
from .base import PageInput, Tool, ToolInput, ToolResponse

logger = logging.getLogger(__name__)

DEFAULT_LEAD_STATUS = 2


class GetLeadsInput(PageInput):
    limit: int = Field(100, ge=1, le=1000)
    status: Optional[int] = Field(None, gt=0, description="Lead status ID")
    source: Optional[int] = Field(None, gt=0, description="Lead source ID")
    assigned: Optional[int] = Field(None, ge=0, description="Assigned staff ID")
    search: Optional[str] = Field(None, description="Search name, email or company")
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class LeadIdInput(ToolInput):
    lead_id: int = Field(..., gt=0)


class CreateLeadInput(ToolInput):
    name: str = Field(..., min_length=1, max_length=191)
    title: str = ""
    email: str = ""
    website: str = ""
    phonenumber: str = ""
    company: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    country: int = Field(0, ge=0)
    zip: str = ""
    source: int = Field(1, gt=0)
    assigned: int = Field(0, ge=0)
    description: str = ""
    default_language: str = "english"


async def get_leads(args: GetLeadsInput, db) -> ToolResponse:
    where = WhereBuilder()
    where.add_if(args.status, "l.status = {}", args.status)
    where.add_if(args.source, "l.source = {}", args.source)
    where.add_if(args.assigned, "l.assigned = {}", args.assigned)
    where.add_if(
        args.search,
        "(l.name ILIKE {0} OR l.email ILIKE {0} OR l.company ILIKE {0})",
        like(args.search or ""),
    )
    where.add_if(args.date_from, "l.dateadded::date >= {}", args.date_from)
    where.add_if(args.date_to, "l.dateadded::date <= {}", args.date_to)

    page = await db.query_with_limit(
        f"""
        SELECT l.id, l.name, l.title, l.company, l.email, l.phonenumber,
               l.status, ls.name AS status_name, l.source, src.name AS source_name,
               l.assigned, l.dateadded, l.lastcontact
        FROM tblleads l
        LEFT JOIN tblleads_status ls ON ls.id = l.status
        LEFT JOIN tblleads_sources src ON src.id = l.source
        {where.clause}
        ORDER BY l.dateadded DESC, l.id DESC
        """,
        where.params,
        count_sql=f"SELECT COUNT(*) FROM tblleads l {where.clause}",
        limit=args.limit,
        offset=args.offset,
    )
    return ToolResponse.success({
        "leads": page.data,
        "pagination": {
            "limit": page.limit,
            "offset": page.offset,
            "total": page.total,
            "has_more": page.has_more,
        },
    })


async def get_lead(args: LeadIdInput, db) -> ToolResponse:
    lead = await db.query_one(
        """
        SELECT l.*, ls.name AS status_name, src.name AS source_name
        FROM tblleads l
        LEFT JOIN tblleads_status ls ON ls.id = l.status
        LEFT JOIN tblleads_sources src ON src.id = l.source
        WHERE l.id = $1
        """,
        [args.lead_id],
    )
    if lead is None:
        raise NotFoundError("Lead", args.lead_id)
    return ToolResponse.success({"lead": lead})


async def create_lead(args: CreateLeadInput, db) -> ToolResponse:
    if args.email:
        existing = await db.fetch_value("SELECT id FROM tblleads WHERE email = $1", [args.email])
        if existing is not None:
            raise ValidationError(
                f"A lead with email {args.email} already exists (ID: {existing})",
                field="email",
            )

    if await db.fetch_value("SELECT id FROM tblleads_sources WHERE id = $1", [args.source]) is None:
        raise NotFoundError("Lead source", args.source)

    if args.assigned and await db.fetch_value(
        "SELECT staffid FROM tblstaff WHERE staffid = $1", [args.assigned]
    ) is None:
        raise NotFoundError("Staff member", args.assigned)

    lead_id = await db.execute_insert(
        """
        INSERT INTO tblleads (
            name, title, email, website, phonenumber, company, address, city, state,
            country, zip, source, assigned, description, default_language,
            dateadded, status
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, NOW(), $16)
        RETURNING id
        """,
        [
            args.name,
            args.title,
            args.email,
            args.website,
            args.phonenumber,
            args.company,
            args.address,
            args.city,
            args.state,
            args.country,
            args.zip,
            args.source,
            args.assigned,
            args.description,
            args.default_language,
            DEFAULT_LEAD_STATUS,
        ],
    )
    logger.info(f"Lead created: {lead_id}")

    return ToolResponse.success({
        "success": True,
        "message": "Lead created successfully",
        "lead_id": lead_id,
        "name": args.name,
        "status": DEFAULT_LEAD_STATUS,
    })


TOOLS: list[Tool] = [
    Tool(
        name="get_leads",
        description="List leads with status, source, assignee, text and date filters",
        input_model=GetLeadsInput,
        handler=get_leads,
    ),
    Tool(
        name="get_lead",
        description="Get one lead",
        input_model=LeadIdInput,
        handler=get_lead,
    ),
    Tool(
        name="create_lead",
        description="Create a new lead",
        input_model=CreateLeadInput,
        handler=create_lead,
        read_only=False,
    ),
]
