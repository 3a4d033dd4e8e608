# gateway.py
"""
Gateway de pagamento
====================
Interface usada pelos fluxos de pagamento e uma implementação simulada
(latência artificial + sucesso probabilístico). Uma integração real só
precisa implementar PaymentGateway.
"""

import random
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from core.rules import generate_transaction_id

CHARGE_FAILURE_REASONS = (
    'Saldo insuficiente',
    'Cartão expirado',
    'Tempo de conexão esgotado',
    'Sistema bancário em manutenção',
    'Limite de pagamento excedido',
)

REFUND_FAILURE_REASON = 'Sistema bancário ocupado, tente novamente mais tarde'


@dataclass
class GatewayResult:
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


class PaymentGateway(Protocol):
    def attempt_charge(self, amount: Decimal, method: str) -> GatewayResult: ...

    def attempt_refund(self, amount: Decimal, transaction_id: Optional[str]) -> GatewayResult: ...


class SimulatedGateway:
    """Simula um processador de pagamentos externo"""

    def __init__(self, charge_delay: float = 1.0, refund_delay: float = 1.5,
                 charge_success_rate: float = 0.9, refund_success_rate: float = 0.95,
                 rng: Optional[random.Random] = None):
        self.charge_delay = charge_delay
        self.refund_delay = refund_delay
        self.charge_success_rate = charge_success_rate
        self.refund_success_rate = refund_success_rate
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, settings: dict) -> "SimulatedGateway":
        return cls(
            charge_delay=float(settings.get('charge_delay', 1.0)),
            refund_delay=float(settings.get('refund_delay', 1.5)),
            charge_success_rate=float(settings.get('charge_success_rate', 0.9)),
            refund_success_rate=float(settings.get('refund_success_rate', 0.95)),
        )

    def attempt_charge(self, amount: Decimal, method: str) -> GatewayResult:
        if self.charge_delay > 0:
            time.sleep(self.charge_delay)
        if self.rng.random() < self.charge_success_rate:
            return GatewayResult(success=True, transaction_id=generate_transaction_id('TXN'))
        return GatewayResult(success=False, error=self.rng.choice(CHARGE_FAILURE_REASONS))

    def attempt_refund(self, amount: Decimal, transaction_id: Optional[str]) -> GatewayResult:
        if self.refund_delay > 0:
            time.sleep(self.refund_delay)
        if self.rng.random() < self.refund_success_rate:
            return GatewayResult(success=True, transaction_id=generate_transaction_id('REF'))
        return GatewayResult(success=False, error=REFUND_FAILURE_REASON)
