"""
预订编排器 - 每个预订一个支付会话状态机

    Idle --request--> Requesting --secret_received--> AwaitingConfirmation
    AwaitingConfirmation --submit--> Submitting --confirmed--> Succeeded
                                                --declined--> Failed
    Failed --revert--> Idle   (补偿：服务端把支付方式改回 pay_later)

到店付款（pay_later）在预订创建成功后立即终结。
在线支付被拒绝时必须先发出补偿调用，再把原始错误交给调用方；
补偿本身失败只记录日志，不阻塞原始错误。
"""
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Optional, Set

from staydesk_core.engine import Event, EventBus, StateMachine, StateMachineConfig, StateTransition
from staydesk_core.errors import GatewayError, ServerError, StayDeskError, ValidationError
from staydesk_core.payment import IPaymentGateway, PaymentResult
from staydesk.config import settings
from staydesk.models.schemas import BookingRequest, PaymentOption, PaymentStatus
from staydesk.services.api_client import BookingAPIClient
from staydesk.services.booking_list import BookingListReconciler
from staydesk.services.rate_limit import ActionCoalescer, SettleWindow
from staydesk.services import events

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


# ============== 支付会话 ==============

class PaymentPhase(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


IN_FLIGHT_PHASES = (PaymentPhase.REQUESTING, PaymentPhase.SUBMITTING)


def _create_payment_state_machine(booking_id: str) -> StateMachine:
    """创建支付会话状态机"""
    P = PaymentPhase
    return StateMachine(
        config=StateMachineConfig(
            name=f"PaymentSession[{booking_id}]",
            states=[p.value for p in P],
            transitions=[
                StateTransition(P.IDLE.value, P.REQUESTING.value, "request"),
                StateTransition(P.REQUESTING.value, P.AWAITING_CONFIRMATION.value, "secret_received"),
                StateTransition(P.REQUESTING.value, P.FAILED.value, "request_failed"),
                StateTransition(P.AWAITING_CONFIRMATION.value, P.SUBMITTING.value, "submit"),
                StateTransition(P.AWAITING_CONFIRMATION.value, P.FAILED.value, "abandon"),
                StateTransition(P.SUBMITTING.value, P.SUCCEEDED.value, "confirmed"),
                StateTransition(P.SUBMITTING.value, P.FAILED.value, "declined"),
                StateTransition(P.FAILED.value, P.IDLE.value, "revert"),
            ],
            initial_state=P.IDLE.value,
        )
    )


@dataclass
class PaymentSession:
    """
    支付会话（客户端临时持有）

    Attributes:
        booking_id: 预订 ID
        machine: 阶段状态机
        client_secret: 网关句柄，仅在 AwaitingConfirmation / Submitting 阶段存在
    """

    booking_id: str
    machine: StateMachine
    client_secret: Optional[str] = None

    @property
    def phase(self) -> PaymentPhase:
        return PaymentPhase(self.machine.current_state)

    def fire(self, trigger: str) -> bool:
        ok = self.machine.fire(trigger)
        if self.phase not in (PaymentPhase.AWAITING_CONFIRMATION, PaymentPhase.SUBMITTING):
            self.client_secret = None
        return ok


@dataclass
class BookingOutcome:
    """创建预订的结果"""

    booking_id: Optional[str]
    payment_option: PaymentOption
    total_amount: Decimal
    discount_applied: int
    session: Optional[PaymentSession] = None
    message: Optional[str] = None

    @property
    def requires_payment(self) -> bool:
        return self.session is not None


# ============== 报价与校验 ==============

def quote_total(
    room_price: Decimal,
    room_quantity: int,
    nights: int,
    payment_option: PaymentOption,
    discount_percent: int = 0,
) -> Decimal:
    """
    计算总价：单价 × 房间数 × 晚数，在线支付再打折

    Example:
        >>> quote_total(Decimal("100"), 2, 2, PaymentOption.PAY_ONLINE, 10)
        Decimal('360.00')
    """
    if nights <= 0 or room_quantity <= 0:
        return Decimal("0.00")
    base = Decimal(room_price) * room_quantity * nights
    if payment_option == PaymentOption.PAY_ONLINE and discount_percent:
        base = base * (Decimal(100) - Decimal(discount_percent)) / Decimal(100)
    return base.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_booking_request(request: BookingRequest) -> None:
    """
    本地校验（任何网络调用之前）

    Raises:
        ValidationError: 缺少必填项、日期区间无效或房间数小于 1
    """
    if (
        not request.check_in_date
        or not request.check_out_date
        or not request.room_type
        or request.room_quantity is None
        or not request.payment_option
    ):
        raise ValidationError("Please fill in all required fields")
    if request.check_out_date <= request.check_in_date:
        raise ValidationError("Check-out date must be after check-in date")
    if request.room_quantity < 1:
        raise ValidationError("Room quantity must be at least 1")


# ============== 编排器 ==============

class BookingOrchestrator:
    """
    预订 / 支付生命周期编排

    Args:
        api: REST 客户端
        gateway: 支付网关
        bookings: 预订列表协调器（支付成功后由其刷新列表）
        event_bus: 会话事件总线
        coalescer: 动作合并器（默认窗口取配置）
        settle: 终态冷却窗口（默认时长取配置）
        discount_percent: 在线支付折扣
    """

    def __init__(
        self,
        api: BookingAPIClient,
        gateway: IPaymentGateway,
        bookings: BookingListReconciler,
        event_bus: EventBus,
        coalescer: Optional[ActionCoalescer] = None,
        settle: Optional[SettleWindow] = None,
        discount_percent: Optional[int] = None,
    ):
        self._api = api
        self._gateway = gateway
        self._bookings = bookings
        self._bus = event_bus
        self._coalescer = coalescer or ActionCoalescer(settings.ACTION_COALESCE_SECONDS)
        self._settle = settle or SettleWindow(settings.PAYMENT_SETTLE_SECONDS)
        self._discount_percent = (
            discount_percent if discount_percent is not None else settings.ONLINE_DISCOUNT_PERCENT
        )
        self._sessions: Dict[str, PaymentSession] = {}
        self._seen_booking_ids: Set[str] = set()
        self._create_in_flight = False
        self._lock = threading.RLock()

        self._bus.subscribe(events.BOOKINGS_CHANGED, self._on_bookings_changed)

    # ---------- 读取 ----------

    def session(self, booking_id: str) -> Optional[PaymentSession]:
        with self._lock:
            return self._sessions.get(booking_id)

    def phase(self, booking_id: str) -> PaymentPhase:
        session = self.session(booking_id)
        return session.phase if session else PaymentPhase.IDLE

    def is_pay_online_enabled(self, booking_id: str) -> bool:
        """界面按钮是否可用：请求/提交进行中或处于冷却期时禁用"""
        return (
            self.phase(booking_id) not in IN_FLIGHT_PHASES
            and not self._settle.is_settling(("pay_online", booking_id))
        )

    # ---------- 创建预订 ----------

    def create_booking(self, request: BookingRequest) -> Optional[BookingOutcome]:
        """
        创建预订

        Returns:
            BookingOutcome；被合并/冷却/并发保护忽略时返回 None

        Raises:
            ValidationError: 本地校验失败（无网络调用）
            StayDeskError: 服务端/传输/认证失败
        """
        validate_booking_request(request)

        key = ("create", request.hotel_id)
        with self._lock:
            if self._create_in_flight or self._settle.is_settling(key):
                logger.info(f"Ignoring create-booking for hotel {request.hotel_id}: busy")
                return None
            if not self._coalescer.admit(key):
                return None
            self._create_in_flight = True

        try:
            option = request.payment_option
            discount = (
                (request.discount_percent if request.discount_percent is not None else self._discount_percent)
                if option == PaymentOption.PAY_ONLINE else 0
            )
            total = quote_total(request.room_price, request.room_quantity, request.nights, option, discount)

            try:
                resp = self._api.create_booking(request.to_payload(total, discount))
            except StayDeskError as e:
                logger.warning(f"Booking creation for hotel {request.hotel_id} failed: {e}")
                events.publish_notice(self._bus, "error", e.user_message, source="orchestrator")
                raise

            outcome = BookingOutcome(
                booking_id=resp.booking_id,
                payment_option=option,
                total_amount=total,
                discount_applied=discount,
                message=resp.message,
            )

            if option == PaymentOption.PAY_LATER:
                logger.info(f"Booking {resp.booking_id} created (pay_later)")
                events.publish_notice(self._bus, "success", "Hotel booked successfully!", source="orchestrator")
                self._refresh_quietly()
                return outcome

            if not resp.client_secret or not resp.booking_id:
                logger.error(f"Booking {resp.booking_id} created as pay_online without a client secret")
                if resp.booking_id:
                    self._compensate(resp.booking_id)
                error = ServerError("Payment setup failed", context={"booking_id": resp.booking_id})
                events.publish_notice(self._bus, "error", error.user_message, source="orchestrator")
                raise error

            session = PaymentSession(resp.booking_id, _create_payment_state_machine(resp.booking_id))
            session.fire("request")
            session.client_secret = resp.client_secret
            session.fire("secret_received")
            with self._lock:
                self._sessions[resp.booking_id] = session
            logger.info(f"Booking {resp.booking_id} created; awaiting card confirmation")
            outcome.session = session
            return outcome
        finally:
            with self._lock:
                self._create_in_flight = False
            self._settle.start(key)

    # ---------- 在线支付 ----------

    def pay_online(self, booking_id: str) -> Optional[PaymentSession]:
        """
        把已有预订转为在线支付并领取 client secret

        Returns:
            进入 AwaitingConfirmation 的会话；已有会话（请求中、等待确认或提交中）、
            冷却期内或被合并时返回 None

        Raises:
            ValidationError: 预订不存在、已取消或已支付
            StayDeskError: 服务端/传输/认证失败
        """
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise ValidationError("Booking not found.", context={"booking_id": booking_id})
        if booking.is_cancelled:
            raise ValidationError("Cancelled bookings cannot be paid online.", context={"booking_id": booking_id})
        if booking.payment_status == PaymentStatus.COMPLETED:
            raise ValidationError("This booking is already paid.", context={"booking_id": booking_id})

        key = ("pay_online", booking_id)
        with self._lock:
            existing = self._sessions.get(booking_id)
            if existing is not None and (
                existing.phase in IN_FLIGHT_PHASES or existing.phase == PaymentPhase.AWAITING_CONFIRMATION
            ):
                logger.info(f"Ignoring pay-online for booking {booking_id}: {existing.phase.value}")
                return None
            if self._settle.is_settling(key) or not self._coalescer.admit(key):
                return None
            session = PaymentSession(booking_id, _create_payment_state_machine(booking_id))
            session.fire("request")
            self._sessions[booking_id] = session

        try:
            resp = self._api.pay_online(booking_id)
            if not resp.client_secret:
                raise ServerError(resp.message or "Failed to initiate payment", context={"booking_id": booking_id})
        except StayDeskError as e:
            logger.warning(f"Pay-online for booking {booking_id} failed: {e}")
            session.fire("request_failed")
            self._end_session(session)
            events.publish_notice(self._bus, "error", e.user_message, source="orchestrator")
            raise

        session.client_secret = resp.client_secret
        session.fire("secret_received")
        logger.info(f"Booking {booking_id} switched to pay_online; awaiting card confirmation")
        return session

    def confirm_payment(self, booking_id: str, payment_method: str) -> Optional[PaymentResult]:
        """
        通过网关确认支付

        成功：会话进入 Succeeded，发布 booking.payment_succeeded（列表随之刷新）。
        失败：会话进入 Failed，先补偿回 pay_later，再抛出原始 GatewayError。

        Returns:
            PaymentResult；同一预订已有确认在进行中时返回 None

        Raises:
            ValidationError: 没有等待确认的支付会话
            GatewayError: 网关拒绝
        """
        with self._lock:
            session = self._sessions.get(booking_id)
            if session is not None and session.phase == PaymentPhase.SUBMITTING:
                logger.info(f"Ignoring duplicate confirmation for booking {booking_id}")
                return None
            if session is None or session.phase != PaymentPhase.AWAITING_CONFIRMATION:
                raise ValidationError(
                    "No payment is awaiting confirmation for this booking.",
                    context={"booking_id": booking_id},
                )
            client_secret = session.client_secret
            session.fire("submit")

        try:
            result = self._gateway.confirm_card_payment(client_secret, payment_method)
            if not result.succeeded:
                raise GatewayError(
                    f"Payment was not completed (status: {result.status})", code=result.status,
                )
        except Exception as e:
            error = e if isinstance(e, GatewayError) else GatewayError(str(e) or None)
            logger.warning(f"Payment for booking {booking_id} declined: {error.user_message}")
            session.fire("declined")
            self._compensate(booking_id)
            session.fire("revert")
            self._end_session(session)
            self._bus.emit(events.PAYMENT_FAILED, {"booking_id": booking_id, "error": error.user_message}, source="orchestrator")
            events.publish_notice(self._bus, "error", f"Payment failed: {error.user_message}", source="orchestrator")
            if error is e:
                raise
            raise error from e

        session.fire("confirmed")
        self._end_session(session)
        logger.info(f"Payment for booking {booking_id} succeeded")
        events.publish_notice(self._bus, "success", "Payment completed successfully!", source="orchestrator")
        self._bus.emit(
            events.PAYMENT_SUCCEEDED,
            {"booking_id": booking_id, "payment_intent_id": result.payment_intent_id},
            source="orchestrator",
        )
        return result

    def abandon_payment(self, booking_id: str) -> bool:
        """
        访客关闭支付表单：补偿回 pay_later 并销毁会话

        Returns:
            True 如果确实有等待确认的会话被放弃
        """
        with self._lock:
            session = self._sessions.get(booking_id)
            if session is None or session.phase != PaymentPhase.AWAITING_CONFIRMATION:
                return False
            session.fire("abandon")
        self._compensate(booking_id)
        session.fire("revert")
        self._end_session(session)
        logger.info(f"Payment for booking {booking_id} abandoned")
        return True

    # ---------- 内部 ----------

    def _compensate(self, booking_id: str) -> bool:
        """补偿：把服务端的支付方式改回 pay_later；失败只记录日志"""
        try:
            self._api.revert_to_pay_later(booking_id)
        except StayDeskError as e:
            logger.error(f"Failed to revert booking {booking_id} to pay_later: {e}")
            return False
        logger.info(f"Booking {booking_id} reverted to pay_later")
        self._refresh_quietly()
        return True

    def _end_session(self, session: PaymentSession) -> None:
        with self._lock:
            if self._sessions.get(session.booking_id) is session:
                del self._sessions[session.booking_id]
        self._settle.start(("pay_online", session.booking_id))

    def _refresh_quietly(self) -> None:
        try:
            self._bookings.refresh()
        except StayDeskError as e:
            logger.warning(f"Booking list refresh failed: {e}")

    def _on_bookings_changed(self, event: Event) -> None:
        """预订从列表消失或被取消时，丢弃对应的支付会话"""
        current_ids = set(event.data.get("booking_ids", []))
        with self._lock:
            for booking_id, session in list(self._sessions.items()):
                if session.phase in IN_FLIGHT_PHASES:
                    continue
                vanished = booking_id in self._seen_booking_ids and booking_id not in current_ids
                booking = self._bookings.get(booking_id)
                if vanished or (booking is not None and booking.is_cancelled):
                    logger.info(f"Dropping payment session for booking {booking_id}")
                    del self._sessions[booking_id]
            self._seen_booking_ids = current_ids

    # ---------- 生命周期 ----------

    def close(self) -> None:
        """会话结束：所有等待确认的支付都补偿并销毁"""
        self._bus.unsubscribe(events.BOOKINGS_CHANGED, self._on_bookings_changed)
        with self._lock:
            pending = [
                bid for bid, s in self._sessions.items()
                if s.phase == PaymentPhase.AWAITING_CONFIRMATION
            ]
        for booking_id in pending:
            self.abandon_payment(booking_id)
        with self._lock:
            leftover = list(self._sessions)
            self._sessions.clear()
        if leftover:
            logger.warning(f"Discarded in-flight payment sessions on close: {leftover}")
