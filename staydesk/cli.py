"""CLI entry point using Typer."""
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from staydesk_core.errors import StayDeskError
from staydesk.config import settings
from staydesk.models.schemas import BookingCategory, BookingRequest, PaymentOption
from staydesk.services import events
from staydesk.services.booking_list import categorize_booking, describe_cancellation
from staydesk.services.session import GuestSession

app = typer.Typer(
    name="staydesk",
    help="Hotel booking client: bookings, online payment and live notifications.",
    add_completion=False,
)
console = Console()

TOKEN_OPTION = typer.Option(..., "--token", envvar="STAYDESK_TOKEN", help="Bearer token of the signed-in guest")


@app.callback()
def configure(
    log_level: str = typer.Option(settings.LOG_LEVEL, "--log-level", help="Logging level"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _money(amount) -> str:
    return f"{settings.CURRENCY_SYMBOL}{Decimal(amount):.2f}"


def _open_session(token: str, with_channel: bool = False) -> GuestSession:
    try:
        session = GuestSession(token)
        session.open(with_channel=with_channel)
    except StayDeskError as e:
        console.print(f"[red]Error:[/red] {e.user_message}")
        raise typer.Exit(code=1)
    return session


def _fail(session: GuestSession, error: StayDeskError) -> None:
    console.print(f"[red]Error:[/red] {error.user_message}")
    session.sign_out()
    raise typer.Exit(code=1)


@app.command()
def book(
    hotel_id: str = typer.Argument(..., help="Hotel ID"),
    check_in: datetime = typer.Option(..., "--check-in", formats=["%Y-%m-%d"], help="Check-in date"),
    check_out: datetime = typer.Option(..., "--check-out", formats=["%Y-%m-%d"], help="Check-out date"),
    room_type: str = typer.Option(..., "--room-type", help="Room type"),
    price: float = typer.Option(..., "--price", help="Nightly room price"),
    rooms: int = typer.Option(1, "--rooms", help="Number of rooms"),
    pay_online: bool = typer.Option(False, "--pay-online/--pay-later", help="Payment option"),
    payment_method: Optional[str] = typer.Option(
        None, "--payment-method", help="Stripe payment method ID (pm_...) used with --pay-online",
    ),
    token: str = TOKEN_OPTION,
):
    """Book a hotel, optionally paying online right away."""
    session = _open_session(token)
    request = BookingRequest(
        hotel_id=hotel_id,
        check_in_date=check_in,
        check_out_date=check_out,
        room_type=room_type,
        room_quantity=rooms,
        payment_option=PaymentOption.PAY_ONLINE if pay_online else PaymentOption.PAY_LATER,
        room_price=Decimal(str(price)),
    )
    try:
        outcome = session.orchestrator.create_booking(request)
        if outcome is None:
            console.print("[yellow]A booking request is already in progress.[/yellow]")
        else:
            console.print(
                f"[green]Booked[/green] {outcome.booking_id}: {_money(outcome.total_amount)}"
                + (f" ({outcome.discount_applied}% online discount)" if outcome.discount_applied else "")
            )
            if outcome.requires_payment:
                if payment_method:
                    session.orchestrator.confirm_payment(outcome.booking_id, payment_method)
                    console.print("[green]Payment completed successfully![/green]")
                else:
                    console.print("No payment method given; the booking stays pay-at-hotel.")
    except StayDeskError as e:
        _fail(session, e)
    session.sign_out()


@app.command()
def bookings(
    category: Optional[BookingCategory] = typer.Option(None, "--category", help="Only show one category"),
    token: str = TOKEN_OPTION,
):
    """List my bookings."""
    session = _open_session(token)
    rows = session.bookings.filter_by_category(category)
    today = datetime.now().date()

    table = Table(title="My bookings")
    for column in ("ID", "Hotel", "Dates", "Rooms", "Total", "Payment", "Category"):
        table.add_column(column)
    for b in rows:
        status = f"{b.payment_option.value} / {b.payment_status.value}"
        if b.is_cancelled:
            status = describe_cancellation(b) or "Cancelled"
        table.add_row(
            b.id,
            b.hotel_name or b.hotel_id or "",
            f"{b.check_in_date} → {b.check_out_date}",
            f"{b.room_quantity} x {b.room_type}",
            _money(b.total_amount),
            status,
            categorize_booking(b, today).value,
        )
    console.print(table)
    session.sign_out()


@app.command()
def cancel(
    booking_id: str = typer.Argument(..., help="Booking ID"),
    reason: str = typer.Option("", "--reason", help="Cancellation reason"),
    token: str = TOKEN_OPTION,
):
    """Cancel a booking."""
    session = _open_session(token)
    try:
        session.bookings.cancel(booking_id, reason)
    except StayDeskError as e:
        _fail(session, e)
    console.print(f"[green]Booking {booking_id} cancelled.[/green]")
    session.sign_out()


@app.command()
def pay(
    booking_id: str = typer.Argument(..., help="Booking ID"),
    payment_method: str = typer.Option(..., "--payment-method", help="Stripe payment method ID (pm_...)"),
    token: str = TOKEN_OPTION,
):
    """Switch a pay-at-hotel booking to online payment and pay it."""
    session = _open_session(token)
    try:
        payment = session.orchestrator.pay_online(booking_id)
        if payment is None:
            console.print("[yellow]A payment for this booking is already in progress.[/yellow]")
        else:
            session.orchestrator.confirm_payment(booking_id, payment_method)
            console.print("[green]Payment completed successfully![/green]")
    except StayDeskError as e:
        _fail(session, e)
    session.sign_out()


@app.command()
def notifications(
    unread_only: bool = typer.Option(False, "--unread-only", help="Only show unread notifications"),
    token: str = TOKEN_OPTION,
):
    """List notifications."""
    session = _open_session(token)
    store = session.notifications
    table = Table(title=f"Notifications ({store.unread_count} unread)")
    for column in ("", "ID", "Type", "Title", "Message"):
        table.add_column(column)
    for n in store.notifications:
        if unread_only and n.read:
            continue
        table.add_row("" if n.read else "•", n.id, n.type.value, n.title, n.message)
    console.print(table)
    session.sign_out()


@app.command("mark-read")
def mark_read(
    notification_id: Optional[str] = typer.Argument(None, help="Notification ID"),
    all_: bool = typer.Option(False, "--all", help="Mark every notification as read"),
    token: str = TOKEN_OPTION,
):
    """Mark one or all notifications as read."""
    if not notification_id and not all_:
        console.print("[red]Error:[/red] Give a notification ID or --all.")
        raise typer.Exit(code=1)
    session = _open_session(token)
    if all_:
        session.notifications.mark_all_as_read()
    else:
        session.notifications.mark_as_read(notification_id)
    console.print(f"{session.notifications.unread_count} unread")
    session.sign_out()


@app.command()
def watch(
    seconds: Optional[float] = typer.Option(None, "--seconds", help="Stop after this many seconds"),
    token: str = TOKEN_OPTION,
):
    """Stream live notifications until interrupted."""
    session = _open_session(token, with_channel=True)
    bus = session.event_bus

    bus.subscribe(
        events.CHANNEL_STATE_CHANGED,
        lambda e: console.print(f"[dim]channel: {e.data.get('state')}[/dim]"),
    )
    bus.subscribe(
        events.NOTIFICATIONS_CHANGED,
        lambda e: console.print(f"{e.data.get('unread_count')} unread / {e.data.get('total')} total"),
    )
    bus.subscribe(
        events.UI_NOTICE,
        lambda e: console.print(f"[{'red' if e.data.get('level') == 'error' else 'green'}]{e.data.get('message')}[/]"),
    )
    console.print(f"Watching notifications ({session.notifications.unread_count} unread). Ctrl+C to stop.")

    started = time.monotonic()
    try:
        while session.is_open and (seconds is None or time.monotonic() - started < seconds):
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    session.sign_out()


def main():
    app()


if __name__ == "__main__":
    main()
