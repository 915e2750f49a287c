"""Invoice tools (tblinvoices, tblitemable, tblinvoicepaymentrecords).

Invoice status codes:
    1 Unpaid, 2 Paid, 3 Partially Paid, 4 Overdue, 5 Draft, 6 Cancelled

create_invoice and add_invoice_payment run inside one transaction each, so a
failure part way through leaves no invoice without items and no payment
without its status update.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import Field

from ..db.query_builder import WhereBuilder, like
from ..exceptions import NotFoundError, ValidationError
from .base import PageInput, Tool, ToolInput, ToolResponse

logger = logging.getLogger(__name__)

STATUS_UNPAID = 1
STATUS_PAID = 2
STATUS_PARTIALLY_PAID = 3
STATUS_OVERDUE = 4
STATUS_DRAFT = 5
STATUS_CANCELLED = 6

STATUS_NAMES = {
    STATUS_UNPAID: "Unpaid",
    STATUS_PAID: "Paid",
    STATUS_PARTIALLY_PAID: "Partially Paid",
    STATUS_OVERDUE: "Overdue",
    STATUS_DRAFT: "Draft",
    STATUS_CANCELLED: "Cancelled",
}

STATUS_FILTERS = {
    "unpaid": STATUS_UNPAID,
    "paid": STATUS_PAID,
    "partially_paid": STATUS_PARTIALLY_PAID,
    "overdue": STATUS_OVERDUE,
    "draft": STATUS_DRAFT,
    "cancelled": STATUS_CANCELLED,
}

STATUS_NAME_SQL = (
    "CASE inv.status "
    + " ".join(f"WHEN {code} THEN '{name}'" for code, name in STATUS_NAMES.items())
    + " ELSE 'Unknown' END"
)

INVOICE_NUMBER_PREFIX = "INV-"

# Advisory lock key guarding invoice number allocation
INVOICE_NUMBER_LOCK_KEY = 0x494E56


def next_invoice_number(last_number: Optional[str]) -> str:
    """``INV-000042`` -> ``INV-000043``; starts at ``INV-000001``."""
    next_value = 1
    if last_number:
        match = re.search(r"(\d+)$", str(last_number))
        if match:
            next_value = int(match.group(1)) + 1
    return f"{INVOICE_NUMBER_PREFIX}{next_value:06d}"


def payment_status(current: int, total: Decimal, paid: Decimal) -> int:
    """Status after a payment. Draft and Cancelled invoices never move."""
    if current not in (STATUS_UNPAID, STATUS_PARTIALLY_PAID, STATUS_OVERDUE):
        return current
    if paid >= total:
        return STATUS_PAID
    if paid > 0:
        return STATUS_PARTIALLY_PAID
    return STATUS_UNPAID


# ============================================
# Input models
# ============================================

class GetInvoicesInput(PageInput):
    limit: int = Field(100, ge=1, le=1000)
    status: Optional[Literal["unpaid", "paid", "partially_paid", "overdue", "draft", "cancelled"]] = None
    client_id: Optional[int] = Field(None, gt=0)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = Field(None, description="Search invoice number or client name")


class InvoiceIdInput(ToolInput):
    invoice_id: int = Field(..., gt=0)


class InvoiceItemInput(ToolInput):
    description: str = Field(..., min_length=1)
    long_description: str = ""
    qty: Decimal = Field(..., gt=0)
    rate: Decimal = Field(..., ge=0)
    unit: str = ""


class CreateInvoiceInput(ToolInput):
    client_id: int = Field(..., gt=0)
    invoice_date: date = Field(default_factory=date.today, alias="date")
    duedate: Optional[date] = None
    currency: int = Field(1, ge=1, description="Currency ID")
    discount_type: Literal["percent", "fixed"] = "percent"
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    discount_total: Decimal = Field(Decimal("0"), ge=0)
    adjustment: Decimal = Decimal("0")
    terms: str = ""
    clientnote: str = ""
    adminnote: str = ""
    items: list[InvoiceItemInput] = Field(default_factory=list)


class AddPaymentInput(ToolInput):
    invoice_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)
    paymentdate: date = Field(default_factory=date.today)
    paymentmode: str = "bank"
    transactionid: str = ""
    note: str = ""


# ============================================
# Handlers
# ============================================

async def get_invoices(args: GetInvoicesInput, db) -> ToolResponse:
    where = WhereBuilder()
    if args.status:
        where.add("inv.status = {}", STATUS_FILTERS[args.status])
    where.add_if(args.client_id, "inv.clientid = {}", args.client_id)
    where.add_if(args.date_from, "inv.date >= {}", args.date_from)
    where.add_if(args.date_to, "inv.date <= {}", args.date_to)
    where.add_if(
        args.search,
        "(inv.number::text ILIKE {0} OR c.company ILIKE {0})",
        like(args.search or ""),
    )

    page = await db.query_with_limit(
        f"""
        SELECT inv.id, inv.number, inv.clientid, c.company AS client_name,
               inv.date, inv.duedate, inv.currency, inv.subtotal, inv.total,
               inv.status, {STATUS_NAME_SQL} AS status_name
        FROM tblinvoices inv
        LEFT JOIN tblclients c ON c.userid = inv.clientid
        {where.clause}
        ORDER BY inv.date DESC, inv.id DESC
        """,
        where.params,
        count_sql=f"""
        SELECT COUNT(*) FROM tblinvoices inv
        LEFT JOIN tblclients c ON c.userid = inv.clientid
        {where.clause}
        """,
        limit=args.limit,
        offset=args.offset,
    )
    return ToolResponse.success({
        "invoices": page.data,
        "pagination": {
            "limit": page.limit,
            "offset": page.offset,
            "total": page.total,
            "has_more": page.has_more,
        },
    })


async def get_invoice(args: InvoiceIdInput, db) -> ToolResponse:
    invoice = await db.query_one(
        f"""
        SELECT inv.*, {STATUS_NAME_SQL} AS status_name,
               c.company AS client_name, c.vat AS client_vat,
               (SELECT COALESCE(SUM(amount), 0) FROM tblinvoicepaymentrecords
                 WHERE invoiceid = inv.id) AS amount_paid
        FROM tblinvoices inv
        LEFT JOIN tblclients c ON c.userid = inv.clientid
        WHERE inv.id = $1
        """,
        [args.invoice_id],
    )
    if invoice is None:
        raise NotFoundError("Invoice", args.invoice_id)

    items = await db.query(
        """
        SELECT id, description, long_description, qty, rate, unit, item_order
        FROM tblitemable
        WHERE rel_type = 'invoice' AND rel_id = $1
        ORDER BY item_order
        """,
        [args.invoice_id],
    )
    payments = await db.query(
        """
        SELECT id, amount, paymentdate, paymentmode, transactionid, note, daterecorded
        FROM tblinvoicepaymentrecords
        WHERE invoiceid = $1
        ORDER BY paymentdate, id
        """,
        [args.invoice_id],
    )
    return ToolResponse.success({"invoice": invoice, "items": items, "payments": payments})


async def create_invoice(args: CreateInvoiceInput, db) -> ToolResponse:
    subtotal = sum((item.qty * item.rate for item in args.items), Decimal("0"))
    if args.discount_type == "percent":
        discount = subtotal * args.discount_percent / 100
    else:
        discount = args.discount_total
    total = subtotal - discount + args.adjustment

    async with db.transaction_scope() as conn:
        client = await conn.fetchrow(
            "SELECT userid, company FROM tblclients WHERE userid = $1",
            args.client_id,
        )
        if client is None:
            raise NotFoundError("Customer", args.client_id)

        # Held until commit or rollback; serializes numbering across creators
        await conn.execute("SELECT pg_advisory_xact_lock($1)", INVOICE_NUMBER_LOCK_KEY)
        last_number = await conn.fetchval(
            "SELECT number FROM tblinvoices ORDER BY id DESC LIMIT 1"
        )
        number = next_invoice_number(last_number)

        invoice_id = await conn.fetchval(
            """
            INSERT INTO tblinvoices (
                clientid, number, date, duedate, currency, subtotal, total,
                discount_percent, discount_total, discount_type, adjustment,
                terms, clientnote, adminnote, datecreated, status, sent
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, NOW(), $15, 0)
            RETURNING id
            """,
            args.client_id,
            number,
            args.invoice_date,
            args.duedate,
            args.currency,
            subtotal,
            total,
            args.discount_percent,
            discount,
            args.discount_type,
            args.adjustment,
            args.terms,
            args.clientnote,
            args.adminnote,
            STATUS_DRAFT,
        )

        for order, item in enumerate(args.items, start=1):
            await conn.execute(
                """
                INSERT INTO tblitemable (
                    rel_id, rel_type, description, long_description, qty, rate, unit, item_order
                ) VALUES ($1, 'invoice', $2, $3, $4, $5, $6, $7)
                """,
                invoice_id,
                item.description,
                item.long_description,
                item.qty,
                item.rate,
                item.unit,
                order,
            )

    logger.info(f"Invoice {number} created for client {args.client_id}")
    return ToolResponse.success({
        "success": True,
        "message": "Invoice created successfully",
        "invoice_id": invoice_id,
        "number": number,
        "client": client["company"],
        "subtotal": subtotal,
        "discount": discount,
        "total": total,
        "items": len(args.items),
        "status": STATUS_NAMES[STATUS_DRAFT],
    })


async def add_invoice_payment(args: AddPaymentInput, db) -> ToolResponse:
    async with db.transaction_scope() as conn:
        invoice = await conn.fetchrow(
            """
            SELECT id, number, total, status,
                   (SELECT COALESCE(SUM(amount), 0) FROM tblinvoicepaymentrecords
                     WHERE invoiceid = tblinvoices.id) AS amount_paid
            FROM tblinvoices
            WHERE id = $1
            FOR UPDATE
            """,
            args.invoice_id,
        )
        if invoice is None:
            raise NotFoundError("Invoice", args.invoice_id)

        status = invoice["status"]
        total = Decimal(invoice["total"] or 0)
        paid = Decimal(invoice["amount_paid"] or 0)

        if status == STATUS_DRAFT:
            raise ValidationError(
                f"Cannot add payment to draft invoice #{invoice['number']}; mark it as sent first",
                field="invoice_id",
            )
        if status == STATUS_CANCELLED:
            raise ValidationError(
                f"Cannot add payment to cancelled invoice #{invoice['number']}",
                field="invoice_id",
            )

        remaining = total - paid
        if remaining <= 0:
            raise ValidationError(
                f"Invoice #{invoice['number']} is already fully paid ({paid}/{total})",
                field="invoice_id",
            )
        if args.amount > remaining:
            raise ValidationError(
                f"Payment amount ({args.amount}) exceeds remaining balance ({remaining})",
                field="amount",
            )

        if args.transactionid:
            duplicate = await conn.fetchval(
                """
                SELECT id FROM tblinvoicepaymentrecords
                WHERE invoiceid = $1 AND amount = $2 AND paymentdate = $3 AND transactionid = $4
                """,
                args.invoice_id,
                args.amount,
                args.paymentdate,
                args.transactionid,
            )
            if duplicate is not None:
                raise ValidationError(
                    f"Duplicate payment: payment {duplicate} has the same amount, date and transaction ID",
                    field="transactionid",
                )

        payment_id = await conn.fetchval(
            """
            INSERT INTO tblinvoicepaymentrecords (
                invoiceid, amount, paymentdate, paymentmode, transactionid, note, daterecorded
            ) VALUES ($1, $2, $3, $4, $5, $6, NOW())
            RETURNING id
            """,
            args.invoice_id,
            args.amount,
            args.paymentdate,
            args.paymentmode,
            args.transactionid,
            args.note,
        )

        new_paid = paid + args.amount
        new_status = payment_status(status, total, new_paid)
        if new_status != status:
            await conn.execute(
                "UPDATE tblinvoices SET status = $1 WHERE id = $2",
                new_status,
                args.invoice_id,
            )

    return ToolResponse.success({
        "success": True,
        "message": "Payment recorded successfully",
        "payment_id": payment_id,
        "invoice_number": invoice["number"],
        "amount": args.amount,
        "total_paid": new_paid,
        "invoice_total": total,
        "status": STATUS_NAMES.get(new_status, "Unknown"),
    })


TOOLS: list[Tool] = [
    Tool(
        name="get_invoices",
        description="List invoices with optional status, client, date and text filters",
        input_model=GetInvoicesInput,
        handler=get_invoices,
        feature="basic_accounting",
    ),
    Tool(
        name="get_invoice",
        description="Get one invoice with its items and payments",
        input_model=InvoiceIdInput,
        handler=get_invoice,
        feature="basic_accounting",
    ),
    Tool(
        name="create_invoice",
        description="Create a draft invoice with line items",
        input_model=CreateInvoiceInput,
        handler=create_invoice,
        feature="basic_accounting",
        read_only=False,
    ),
    Tool(
        name="add_invoice_payment",
        description="Record a payment against an invoice and update its status",
        input_model=AddPaymentInput,
        handler=add_invoice_payment,
        feature="basic_accounting",
        read_only=False,
    ),
]
