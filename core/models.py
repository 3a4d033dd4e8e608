# models.py
# Definições de dataclasses e modelos de domínio

import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

USER_ROLES = ('admin', 'employee')

ORDER_STATUSES = ('pending', 'processing', 'completed', 'cancelled')
ORDER_PAYMENT_STATUSES = ('pending', 'paid', 'failed')

PAYMENT_METHODS = ('credit_card', 'debit_card', 'bank_transfer', 'digital_wallet', 'cash')
PAYMENT_STATUSES = ('pending', 'processing', 'completed', 'failed', 'cancelled', 'refunding', 'refunded')

# Catálogos públicos exibidos pelo cliente web (dinheiro só no balcão)
PAYMENT_METHOD_CATALOG = [
    {'id': 'credit_card', 'name': 'Cartão de crédito',
     'description': 'Visa, MasterCard, American Express e outras bandeiras', 'enabled': True},
    {'id': 'debit_card', 'name': 'Cartão de débito',
     'description': 'Cartões de débito dos principais bancos', 'enabled': True},
    {'id': 'bank_transfer', 'name': 'Transferência bancária',
     'description': 'Transferência via internet banking ou aplicativo', 'enabled': True},
    {'id': 'digital_wallet', 'name': 'Carteira digital',
     'description': 'Pix, Apple Pay, Google Pay e similares', 'enabled': True},
    {'id': 'cash', 'name': 'Dinheiro',
     'description': 'Somente para pagamento presencial na loja', 'enabled': False},
]

PAYMENT_STATUS_CATALOG = [
    {'id': 'pending', 'name': 'Pendente', 'description': 'Pagamento enviado, aguardando processamento', 'color': '#fbbf24'},
    {'id': 'processing', 'name': 'Processando', 'description': 'Pagamento em processamento', 'color': '#3b82f6'},
    {'id': 'completed', 'name': 'Concluído', 'description': 'Pagamento realizado com sucesso', 'color': '#10b981'},
    {'id': 'failed', 'name': 'Falhou', 'description': 'Falha no processamento do pagamento', 'color': '#ef4444'},
    {'id': 'cancelled', 'name': 'Cancelado', 'description': 'Pagamento cancelado', 'color': '#6b7280'},
    {'id': 'refunding', 'name': 'Reembolsando', 'description': 'Reembolso em processamento', 'color': '#f59e0b'},
    {'id': 'refunded', 'name': 'Reembolsado', 'description': 'Reembolso concluído', 'color': '#8b5cf6'},
]


def money_str(value: Optional[Decimal]) -> Optional[str]:
    """Formata valor monetário com exatamente duas casas decimais"""
    if value is None:
        return None
    return f"{Decimal(value).quantize(Decimal('0.01'))}"


@dataclass
class User:
    id: str
    name: str
    email: str
    password_hash: str
    role: str
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "User":
        return cls(
            id=row["id"], name=row["name"], email=row["email"],
            password_hash=row["password_hash"], role=row["role"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    def summary(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'email': self.email}

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.summary(),
            'role': self.role,
            'is_active': self.is_active,
            'created_at': self.created_at,
        }


@dataclass
class Product:
    id: str
    name: str
    description: Optional[str]
    price: Decimal
    stock_quantity: int
    category: Optional[str]
    sku: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Product":
        return cls(
            id=row["id"], name=row["name"], description=row["description"],
            price=Decimal(row["price"]), stock_quantity=int(row["stock_quantity"]),
            category=row["category"], sku=row["sku"], is_active=bool(row["is_active"]),
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'price': money_str(self.price),
            'stock_quantity': self.stock_quantity,
            'category': self.category,
            'sku': self.sku,
            'is_active': self.is_active,
            'created_at': self.created_at,
        }


@dataclass
class OrderItem:
    id: str
    order_id: str
    product_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OrderItem":
        return cls(
            id=row["id"], order_id=row["order_id"], product_id=row["product_id"],
            quantity=int(row["quantity"]), unit_price=Decimal(row["unit_price"]),
            total_price=Decimal(row["total_price"]), created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'quantity': self.quantity,
            'unit_price': money_str(self.unit_price),
            'total_price': money_str(self.total_price),
        }


@dataclass
class Order:
    id: str
    user_id: str
    order_number: str
    total_amount: Decimal
    status: str
    payment_status: str
    shipping_address: Optional[str]
    notes: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Order":
        return cls(
            id=row["id"], user_id=row["user_id"], order_number=row["order_number"],
            total_amount=Decimal(row["total_amount"]), status=row["status"],
            payment_status=row["payment_status"], shipping_address=row["shipping_address"],
            notes=row["notes"], created_at=row["created_at"], updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'order_number': self.order_number,
            'total_amount': money_str(self.total_amount),
            'status': self.status,
            'payment_status': self.payment_status,
            'shipping_address': self.shipping_address,
            'notes': self.notes,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@dataclass
class Payment:
    id: str
    order_id: str
    user_id: str
    amount: Decimal
    payment_method: str
    status: str
    transaction_id: Optional[str]
    processed_at: Optional[str]
    transaction_date: str
    refund_reason: Optional[str]
    refund_requested_at: Optional[str]
    refunded_at: Optional[str]
    refund_transaction_id: Optional[str]
    notes: Optional[str]
    error_message: Optional[str]
    retry_count: int
    last_retry_at: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Payment":
        return cls(
            id=row["id"], order_id=row["order_id"], user_id=row["user_id"],
            amount=Decimal(row["amount"]), payment_method=row["payment_method"],
            status=row["status"], transaction_id=row["transaction_id"],
            processed_at=row["processed_at"], transaction_date=row["transaction_date"],
            refund_reason=row["refund_reason"], refund_requested_at=row["refund_requested_at"],
            refunded_at=row["refunded_at"], refund_transaction_id=row["refund_transaction_id"],
            notes=row["notes"], error_message=row["error_message"],
            retry_count=int(row["retry_count"]), last_retry_at=row["last_retry_at"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        # A API de pagamentos usa camelCase (contrato do cliente web)
        return {
            'id': self.id,
            'orderId': self.order_id,
            'userId': self.user_id,
            'amount': money_str(self.amount),
            'paymentMethod': self.payment_method,
            'status': self.status,
            'transactionId': self.transaction_id,
            'processedAt': self.processed_at,
            'transactionDate': self.transaction_date,
            'refundReason': self.refund_reason,
            'refundRequestedAt': self.refund_requested_at,
            'refundedAt': self.refunded_at,
            'refundTransactionId': self.refund_transaction_id,
            'notes': self.notes,
            'errorMessage': self.error_message,
            'retryCount': self.retry_count,
            'lastRetryAt': self.last_retry_at,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }
