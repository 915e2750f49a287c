"""Task tools (tbltasks, tbltask_assigned)."""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import Field

from ..db.query_builder import WhereBuilder
from ..exceptions import NotFoundError
from .base import PageInput, Tool, ToolInput, ToolResponse

# 1 Not Started, 2 In Progress, 3 Testing, 4 Awaiting Feedback, 5 Complete
STATUS_COMPLETE = 5
TASK_STATUS_NAMES = {
    1: "Not Started",
    2: "In Progress",
    3: "Testing",
    4: "Awaiting Feedback",
    5: "Complete",
}
TASK_STATUS_SQL = (
    "CASE t.status "
    + " ".join(f"WHEN {code} THEN '{name}'" for code, name in TASK_STATUS_NAMES.items())
    + " ELSE 'Unknown' END"
)
PRIORITY_SQL = (
    "CASE t.priority WHEN 1 THEN 'Low' WHEN 2 THEN 'Medium' "
    "WHEN 3 THEN 'High' WHEN 4 THEN 'Urgent' ELSE 'Unknown' END"
)


class GetTasksInput(PageInput):
    status: Optional[int] = Field(None, ge=1, le=5)
    priority: Optional[int] = Field(None, ge=1, le=4, description="1=Low ... 4=Urgent")
    rel_type: Optional[str] = Field(None, description="Related entity type (project, invoice, ...)")
    rel_id: Optional[int] = Field(None, gt=0)
    assigned_to: Optional[int] = Field(None, gt=0, description="Staff ID")
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    overdue_only: bool = False


class TaskIdInput(ToolInput):
    task_id: int = Field(..., gt=0)


class UpdateTaskStatusInput(ToolInput):
    task_id: int = Field(..., gt=0)
    status: int = Field(..., ge=1, le=5)


async def get_tasks(args: GetTasksInput, db) -> ToolResponse:
    where = WhereBuilder()
    where.add_if(args.status, "t.status = {}", args.status)
    where.add_if(args.priority, "t.priority = {}", args.priority)
    where.add_if(args.rel_type, "t.rel_type = {}", args.rel_type)
    where.add_if(args.rel_id, "t.rel_id = {}", args.rel_id)
    where.add_if(
        args.assigned_to,
        "EXISTS (SELECT 1 FROM tbltask_assigned ta WHERE ta.taskid = t.id AND ta.staffid = {})",
        args.assigned_to,
    )
    where.add_if(args.date_from, "t.startdate >= {}", args.date_from)
    where.add_if(args.date_to, "t.startdate <= {}", args.date_to)
    if args.overdue_only:
        where.add("t.duedate < CURRENT_DATE AND t.status <> {}", STATUS_COMPLETE)

    page = await db.query_with_limit(
        f"""
        SELECT t.id, t.name, t.status, {TASK_STATUS_SQL} AS status_name,
               t.priority, {PRIORITY_SQL} AS priority_name,
               t.startdate, t.duedate, t.rel_type, t.rel_id,
               (t.duedate - CURRENT_DATE) AS days_to_deadline
        FROM tbltasks t
        {where.clause}
        ORDER BY t.duedate ASC NULLS LAST, t.id
        """,
        where.params,
        count_sql=f"SELECT COUNT(*) FROM tbltasks t {where.clause}",
        limit=args.limit,
        offset=args.offset,
    )
    return ToolResponse.success({
        "tasks": page.data,
        "pagination": {
            "limit": page.limit,
            "offset": page.offset,
            "total": page.total,
            "has_more": page.has_more,
        },
    })


async def get_task(args: TaskIdInput, db) -> ToolResponse:
    task = await db.query_one(
        f"""
        SELECT t.*, {TASK_STATUS_SQL} AS status_name, {PRIORITY_SQL} AS priority_name
        FROM tbltasks t
        WHERE t.id = $1
        """,
        [args.task_id],
    )
    if task is None:
        raise NotFoundError("Task", args.task_id)

    assignees = await db.query(
        """
        SELECT s.staffid, s.firstname, s.lastname, s.email
        FROM tbltask_assigned ta
        JOIN tblstaff s ON s.staffid = ta.staffid
        WHERE ta.taskid = $1
        """,
        [args.task_id],
    )
    return ToolResponse.success({"task": task, "assignees": assignees})


async def update_task_status(args: UpdateTaskStatusInput, db) -> ToolResponse:
    updated = await db.execute(
        """
        UPDATE tbltasks
        SET status = $1,
            datefinished = CASE WHEN $1 = 5 THEN NOW() ELSE NULL END
        WHERE id = $2
        """,
        [args.status, args.task_id],
    )
    if updated == 0:
        raise NotFoundError("Task", args.task_id)

    return ToolResponse.success({
        "success": True,
        "message": "Task status updated",
        "task_id": args.task_id,
        "status": args.status,
        "status_name": TASK_STATUS_NAMES[args.status],
    })


TOOLS: list[Tool] = [
    Tool(
        name="get_tasks",
        description="List tasks with status, priority, relation, assignee and date filters",
        input_model=GetTasksInput,
        handler=get_tasks,
        feature="projects",
    ),
    Tool(
        name="get_task",
        description="Get one task with its assignees",
        input_model=TaskIdInput,
        handler=get_task,
        feature="projects",
    ),
    Tool(
        name="update_task_status",
        description="Change the status of a task",
        input_model=UpdateTaskStatusInput,
        handler=update_task_status,
        feature="projects",
        read_only=False,
    ),
]
