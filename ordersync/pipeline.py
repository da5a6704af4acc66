from pydantic import ValidationError
from rich.console import Console

from ordersync.errors import MalformedOrder
from ordersync.models import Order
from ordersync.processor import split_order
from ordersync.sheets_client import RowAppender

console = Console()


def parse_order(record) -> Order:
    """Validates a raw database record into an Order."""
    if not isinstance(record, dict):
        raise MalformedOrder(f"Expected an order object, got {type(record).__name__}")
    try:
        return Order.model_validate(record)
    except ValidationError as e:
        raise MalformedOrder(f"Invalid order record: {e}") from e


async def append_order(record, appender: RowAppender, timezone: str = "UTC", target_range: str | None = None) -> list[dict]:
    order = parse_order(record)
    rows = split_order(order, timezone)
    console.print(f"Appending {len(rows)} row(s) for order by {order.purchaser.full_name}")
    return await appender.append_all(rows, target_range)
