# rules.py
# Regras de negócio puras: valores, números de pedido, máquina de estados e elegibilidade

import secrets
import string
import time
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable, Optional

from core.database import from_iso, to_iso
from core.errors import ValidationError
from core.models import Payment

CENT = Decimal('0.01')
_BASE36 = string.digits + string.ascii_lowercase

# Transições legais de status do pedido (completed e cancelled são terminais)
ORDER_STATUS_TRANSITIONS = {
    'pending': ('processing', 'cancelled'),
    'processing': ('completed', 'cancelled'),
    'completed': (),
    'cancelled': (),
}

TERMINAL_ORDER_STATUSES = ('completed', 'cancelled')


def to_money(value: Any) -> Decimal:
    """Converte número/string em Decimal com duas casas. Levanta ValueError se inválido."""
    if isinstance(value, bool):
        raise ValueError(f"Valor monetário inválido: {value!r}")
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise ValueError(value)
        # quantize estoura o contexto decimal (28 dígitos) para valores enormes
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValueError(f"Valor monetário inválido: {value!r}")


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    """Subtotal de um item: preço unitário x quantidade, fixado em duas casas"""
    return (Decimal(unit_price) * quantity).quantize(CENT, rounding=ROUND_HALF_UP)


def order_total(line_totals: Iterable[Decimal]) -> Decimal:
    return sum((Decimal(t) for t in line_totals), Decimal('0.00')).quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_match(expected: Decimal, supplied: Decimal, tolerance: Decimal = CENT) -> bool:
    return abs(Decimal(expected) - Decimal(supplied)) <= Decimal(tolerance)


def _random_base36(length: int = 9) -> str:
    return ''.join(secrets.choice(_BASE36) for _ in range(length))


def generate_order_number() -> str:
    """Formato ORD-<timestamp ms>-<aleatório>"""
    return f"ORD-{int(time.time() * 1000)}-{_random_base36()}"


def generate_transaction_id(prefix: str = 'TXN') -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{_random_base36().upper()}"


def validate_status_transition(current: str, target: str) -> None:
    """Levanta INVALID_STATUS_TRANSITION se current -> target não estiver na tabela"""
    if target not in ORDER_STATUS_TRANSITIONS.get(current, ()):
        raise ValidationError(
            'INVALID_STATUS_TRANSITION',
            f"Status do pedido não pode mudar de {current} para {target}",
            details={'current_status': current, 'requested_status': target},
        )


def stamp_payment_status(payment: Payment, new_status: str, now: datetime) -> Payment:
    """
    Aplica o novo status ao pagamento.

    processed_at é gravado uma única vez, na primeira entrada em completed;
    refunded_at uma única vez, na primeira entrada em refunded.
    """
    if new_status == 'completed' and payment.status != 'completed' and not payment.processed_at:
        payment.processed_at = to_iso(now)
    if new_status == 'refunded' and payment.status != 'refunded' and not payment.refunded_at:
        payment.refunded_at = to_iso(now)
    payment.status = new_status
    payment.updated_at = to_iso(now)
    return payment


def can_retry(payment: Payment, now: datetime, max_retries: int = 3,
              retry_interval: timedelta = timedelta(minutes=5)) -> bool:
    if payment.status != 'failed' or payment.retry_count >= max_retries:
        return False
    last_retry: Optional[datetime] = from_iso(payment.last_retry_at)
    return last_retry is None or now - last_retry >= retry_interval


def is_refundable(payment: Payment, now: datetime,
                  refund_window: timedelta = timedelta(days=30)) -> bool:
    if payment.status != 'completed' or payment.payment_method == 'cash':
        return False
    processed_at = from_iso(payment.processed_at)
    if processed_at is None:
        return False
    return now - processed_at < refund_window
