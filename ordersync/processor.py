import pandas as pd
from ordersync.config import ROW_COLUMNS
from ordersync.errors import MalformedOrder
from ordersync.models import Order


def format_created_at(timestamp, timezone: str = "UTC") -> str:
    """Renders an epoch-milliseconds timestamp as a M/D/YYYY date string."""
    if timestamp is None:
        return ""
    try:
        created = pd.to_datetime(timestamp, unit='ms', utc=True).tz_convert(timezone)
    except (ValueError, OverflowError) as e:
        raise MalformedOrder(f"Order timestamp {timestamp!r} is not a valid date: {e}") from e
    return f"{created.month}/{created.day}/{created.year}"


def split_order(order: Order, timezone: str = "UTC") -> list[dict]:
    """
    Splits one order into one row per person, in the order people were listed.

    The purchaser's row carries the purchase-level fields (payment, volunteer
    selections, comments) plus owed and createdAt. Every other attendee's row
    only carries their personal fields and the purchaser's name.
    Raises MalformedOrder when the order has no single purchaser.
    """
    purchaser_name = order.purchaser.full_name
    owed = order.owed
    created_at = format_created_at(order.timestamp, timezone)

    rows = []
    for person in order.people:
        row = person.personal_fields()
        if person.index == 0:
            row.update({
                "volunteer": ", ".join(order.volunteer),
                "share": ", ".join(order.share),
                "comments": order.comments,
                "admissionQuantity": order.admission_quantity,
                "admissionCost": order.admission_cost,
                "donation": order.donation,
                "total": order.total,
                "deposit": order.deposit,
                "owed": owed,
                "createdAt": created_at,
                "paypalEmail": order.paypal_email,
            })
        else:
            row["purchaser"] = purchaser_name
        rows.append(row)

    return rows


def row_values(row: dict) -> list:
    """Flattens a row into sheet column order. Absent fields become blank cells."""
    return [row.get(col, "") for col in ROW_COLUMNS]


def rows_to_frame(rows: list[dict]) -> pd.DataFrame:
    return pd.DataFrame([row_values(row) for row in rows], columns=ROW_COLUMNS)
