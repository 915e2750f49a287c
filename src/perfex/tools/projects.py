"""Project tools (tblprojects, tblproject_members)."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from pydantic import Field

from ..db.query_builder import WhereBuilder
from ..exceptions import NotFoundError
from .base import PageInput, Tool, ToolInput, ToolResponse

logger = logging.getLogger(__name__)

# 1 Not Started, 2 In Progress, 3 On Hold, 4 Cancelled, 5 Finished
STATUS_FINISHED = 5
PROJECT_STATUS_SQL = (
    "CASE p.status WHEN 1 THEN 'Not Started' WHEN 2 THEN 'In Progress' "
    "WHEN 3 THEN 'On Hold' WHEN 4 THEN 'Cancelled' WHEN 5 THEN 'Finished' "
    "ELSE 'Unknown' END"
)


class GetProjectsInput(PageInput):
    status: Optional[int] = Field(None, ge=1, le=5, description="1=Not Started ... 5=Finished")
    client_id: Optional[int] = Field(None, gt=0)
    billing_type: Optional[int] = Field(None, ge=1, le=3, description="1=Fixed, 2=Hourly, 3=Task hours")
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    overdue_only: bool = False


class ProjectIdInput(ToolInput):
    project_id: int = Field(..., gt=0)


class CreateProjectInput(ToolInput):
    name: str = Field(..., min_length=1, max_length=191)
    client_id: int = Field(..., gt=0)
    billing_type: int = Field(..., ge=1, le=3)
    project_cost: Optional[Decimal] = Field(None, ge=0)
    project_rate_per_hour: Optional[Decimal] = Field(None, ge=0)
    estimated_hours: Optional[Decimal] = Field(None, ge=0)
    start_date: Optional[date] = None
    deadline: Optional[date] = None
    description: str = ""
    members: list[int] = Field(default_factory=list, description="Staff IDs")


async def get_projects(args: GetProjectsInput, db) -> ToolResponse:
    where = WhereBuilder()
    where.add_if(args.status, "p.status = {}", args.status)
    where.add_if(args.client_id, "p.clientid = {}", args.client_id)
    where.add_if(args.billing_type, "p.billing_type = {}", args.billing_type)
    where.add_if(args.date_from, "p.start_date >= {}", args.date_from)
    where.add_if(args.date_to, "p.start_date <= {}", args.date_to)
    if args.overdue_only:
        where.add("p.deadline < CURRENT_DATE AND p.status <> {}", STATUS_FINISHED)

    page = await db.query_with_limit(
        f"""
        SELECT p.id, p.name, p.clientid, c.company AS client_name, p.status,
               {PROJECT_STATUS_SQL} AS status_name, p.billing_type, p.start_date,
               p.deadline, p.progress, p.project_cost, p.estimated_hours
        FROM tblprojects p
        LEFT JOIN tblclients c ON c.userid = p.clientid
        {where.clause}
        ORDER BY p.start_date DESC, p.id DESC
        """,
        where.params,
        count_sql=f"SELECT COUNT(*) FROM tblprojects p {where.clause}",
        limit=args.limit,
        offset=args.offset,
    )
    return ToolResponse.success({
        "projects": page.data,
        "pagination": {
            "limit": page.limit,
            "offset": page.offset,
            "total": page.total,
            "has_more": page.has_more,
        },
    })


async def get_project(args: ProjectIdInput, db) -> ToolResponse:
    project = await db.query_one(
        f"""
        SELECT p.*, {PROJECT_STATUS_SQL} AS status_name, c.company AS client_name,
               (SELECT COUNT(*) FROM tbltasks t
                 WHERE t.rel_type = 'project' AND t.rel_id = p.id) AS total_tasks,
               (SELECT COUNT(*) FROM tbltasks t
                 WHERE t.rel_type = 'project' AND t.rel_id = p.id AND t.status = 5) AS completed_tasks
        FROM tblprojects p
        LEFT JOIN tblclients c ON c.userid = p.clientid
        WHERE p.id = $1
        """,
        [args.project_id],
    )
    if project is None:
        raise NotFoundError("Project", args.project_id)

    members = await db.query(
        """
        SELECT s.staffid, s.firstname, s.lastname, s.email
        FROM tblproject_members pm
        JOIN tblstaff s ON s.staffid = pm.staff_id
        WHERE pm.project_id = $1
        ORDER BY s.firstname, s.lastname
        """,
        [args.project_id],
    )
    return ToolResponse.success({"project": project, "members": members})


async def create_project(args: CreateProjectInput, db) -> ToolResponse:
    start_date = args.start_date or date.today()
    deadline = args.deadline or start_date + timedelta(days=30)

    async with db.transaction_scope() as conn:
        exists = await conn.fetchval("SELECT 1 FROM tblclients WHERE userid = $1", args.client_id)
        if exists is None:
            raise NotFoundError("Customer", args.client_id)

        project_id = await conn.fetchval(
            """
            INSERT INTO tblprojects (
                name, clientid, billing_type, project_cost, project_rate_per_hour,
                estimated_hours, start_date, deadline, description, status,
                progress, project_created, addedfrom
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, 1, 0, CURRENT_DATE, 0)
            RETURNING id
            """,
            args.name,
            args.client_id,
            args.billing_type,
            args.project_cost,
            args.project_rate_per_hour,
            args.estimated_hours,
            start_date,
            deadline,
            args.description,
        )
        for staff_id in dict.fromkeys(args.members):
            await conn.execute(
                "INSERT INTO tblproject_members (project_id, staff_id) VALUES ($1, $2)",
                project_id,
                staff_id,
            )

    logger.info(f"Project created: {project_id} ({args.name})")
    return ToolResponse.success({
        "success": True,
        "message": "Project created successfully",
        "project_id": project_id,
        "start_date": start_date,
        "deadline": deadline,
        "members": list(dict.fromkeys(args.members)),
    })


TOOLS: list[Tool] = [
    Tool(
        name="get_projects",
        description="List projects with status, client, billing and date filters",
        input_model=GetProjectsInput,
        handler=get_projects,
        feature="projects",
    ),
    Tool(
        name="get_project",
        description="Get one project with task counts and members",
        input_model=ProjectIdInput,
        handler=get_project,
        feature="projects",
    ),
    Tool(
        name="create_project",
        description="Create a project and assign its members",
        input_model=CreateProjectInput,
        handler=create_project,
        feature="projects",
        read_only=False,
    ),
]
