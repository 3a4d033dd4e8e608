# services.py
# Camada de serviços para regras de negócio

import math
import sqlite3
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from core.database import Database, new_id, to_iso, utc_now
from core.errors import (
    AuthenticationError, ConflictError, ForbiddenError, NotFoundError, PaymentError, ValidationError,
)
from core.gateway import PaymentGateway
from core.logger import log_debug, log_event, log_warning
from core.models import Order, OrderItem, PAYMENT_METHODS, Payment, Product, USER_ROLES, User, money_str
from core.rules import (
    TERMINAL_ORDER_STATUSES, amounts_match, can_retry, generate_order_number, generate_transaction_id,
    is_refundable, line_total, order_total, stamp_payment_status, to_money, validate_status_transition,
)

Clock = Callable[[], datetime]

_UNPAYABLE_ORDER = {
    'completed': ('ORDER_ALREADY_COMPLETED', 'Pedido já concluído, não é necessário pagar novamente'),
    'cancelled': ('ORDER_CANCELLED', 'Pedido cancelado, não é possível pagar'),
}


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {'page': page, 'limit': limit, 'total': total, 'pages': math.ceil(total / limit) if limit else 0}


def _placeholders(values: Sequence[Any]) -> str:
    return ','.join('?' for _ in values)


class AuthService:
    """Usuários, senhas (bcrypt) e tokens de acesso assinados"""

    TOKEN_SALT = 'gestao-erp-auth'

    def __init__(self, db: Database, secret_key: str, token_max_age: int = 24 * 60 * 60,
                 clock: Clock = utc_now):
        self.db = db
        self.token_max_age = token_max_age
        self.clock = clock
        self.serializer = URLSafeTimedSerializer(secret_key, salt=self.TOKEN_SALT)

    def get_user(self, user_id: str) -> Optional[User]:
        row = self.db.query_one("SELECT * FROM users WHERE id=?", (user_id,))
        return User.from_row(row) if row else None

    def authenticate(self, email: str, password: str) -> Optional[User]:
        row = self.db.query_one("SELECT * FROM users WHERE email=?", (email,))
        if not row:
            return None
        user = User.from_row(row)
        if not user.is_active or not user.password_hash:
            return None
        if bcrypt.checkpw(password.encode('utf-8'), user.password_hash.encode('utf-8')):
            return user
        return None

    def create_user(self, name: str, email: str, password: str, role: str = "employee") -> User:
        """Cria um novo usuário no banco de dados."""
        if role not in USER_ROLES:
            raise ValidationError('INVALID_ROLE', 'Perfil de usuário inválido',
                                  details={'valid_roles': list(USER_ROLES)})
        if not password or len(password) < 4:
            raise ValidationError('INVALID_PASSWORD', 'Senha deve ter pelo menos 4 caracteres')

        password_hash = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')
        now = to_iso(self.clock())
        user_id = new_id()
        self.db.execute(
            "INSERT INTO users(id, name, email, password_hash, role, is_active, created_at, updated_at) "
            "VALUES (?,?,?,?,?,1,?,?)",
            (user_id, name, email, password_hash, role, now, now),
        )
        log_event(f"Usuário criado: {email} (perfil: {role})")
        return self.get_user(user_id)

    def ensure_default_admin(self, name: str, email: str, password: str) -> None:
        """Cria o administrador padrão se ainda não existir nenhum admin"""
        if self.db.query_one("SELECT 1 FROM users WHERE role='admin' LIMIT 1"):
            return
        self.create_user(name, email, password, role='admin')
        log_warning(f"Administrador padrão criado ({email}). Troque a senha em produção.")

    def issue_token(self, user: User) -> str:
        return self.serializer.dumps({'user_id': user.id})

    def user_from_token(self, token: Optional[str]) -> User:
        if not token:
            raise AuthenticationError('MISSING_TOKEN', 'Token de acesso ausente')
        try:
            payload = self.serializer.loads(token, max_age=self.token_max_age)
        except SignatureExpired:
            raise AuthenticationError('TOKEN_EXPIRED', 'Token de acesso expirado')
        except BadSignature:
            raise AuthenticationError('INVALID_TOKEN', 'Token de acesso inválido')

        user = self.get_user(payload.get('user_id', ''))
        if not user:
            raise NotFoundError('USER_NOT_FOUND', 'Usuário não encontrado')
        if not user.is_active:
            raise ForbiddenError('USER_DISABLED', 'Conta de usuário desativada')
        return user


class ProductService:
    """Catálogo de produtos. O estoque só diminui via OrderService.create_order."""

    LOW_STOCK_THRESHOLD = 10

    def __init__(self, db: Database, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    def list_products(self, low_stock: bool = False) -> List[Product]:
        sql = "SELECT * FROM products WHERE is_active=1"
        params: Tuple[Any, ...] = ()
        if low_stock:
            sql += " AND stock_quantity <= ?"
            params = (self.LOW_STOCK_THRESHOLD,)
        return [Product.from_row(r) for r in self.db.query(sql + " ORDER BY name", params)]

    def get_product(self, product_id: str) -> Product:
        row = self.db.query_one("SELECT * FROM products WHERE id=?", (product_id,))
        if not row:
            raise NotFoundError('PRODUCT_NOT_FOUND', 'Produto não encontrado')
        return Product.from_row(row)

    def create_product(self, data: Dict[str, Any]) -> Product:
        name = data.get('name')
        if not isinstance(name, str) or not (2 <= len(name.strip()) <= 200):
            raise ValidationError('INVALID_PRODUCT_NAME', 'Nome do produto deve ter entre 2 e 200 caracteres')
        try:
            price = to_money(data.get('price'))
        except ValueError:
            raise ValidationError('INVALID_PRICE', 'Preço inválido')
        if price < 0:
            raise ValidationError('INVALID_PRICE', 'Preço não pode ser negativo')

        stock = data.get('stock_quantity', 0)
        if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
            raise ValidationError('INVALID_STOCK', 'Estoque deve ser um inteiro não negativo')

        now = to_iso(self.clock())
        product_id = new_id()
        self.db.execute(
            "INSERT INTO products(id, name, description, price, stock_quantity, category, sku, is_active, "
            "created_at, updated_at) VALUES (?,?,?,?,?,?,?,?,?,?)",
            (product_id, name.strip(), data.get('description'), money_str(price), stock,
             data.get('category'), data.get('sku') or None, 1 if data.get('is_active', True) else 0, now, now),
        )
        log_event(f"Produto cadastrado: {name.strip()} (estoque inicial: {stock})")
        return self.get_product(product_id)


class OrderService:
    """Criação de pedidos, consultas e máquina de estados do status"""

    def __init__(self, db: Database, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    def create_order(self, user_id: str, lines: Sequence[Tuple[str, int]],
                     shipping_address: Optional[str] = None, notes: Optional[str] = None) -> Dict[str, Any]:
        """
        Cria o pedido, seus itens e baixa o estoque numa única transação.

        As pré-condições são verificadas na ordem usuário -> produtos -> estoque;
        a primeira falha aborta sem efeitos colaterais.
        """
        with self.db.transaction() as conn:
            user_row = conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()
            if not user_row:
                raise NotFoundError('USER_NOT_FOUND', 'Usuário não existe')
            if not user_row["is_active"]:
                raise ValidationError('USER_INACTIVE', 'Conta de usuário desativada')

            product_ids = [product_id for product_id, _ in lines]
            rows = conn.execute(
                f"SELECT * FROM products WHERE is_active=1 AND id IN ({_placeholders(product_ids)})",
                product_ids,
            ).fetchall()
            products = {row["id"]: Product.from_row(row) for row in rows}
            if len(products) != len(product_ids):
                raise ValidationError('PRODUCTS_NOT_FOUND', 'Alguns produtos não existem ou estão desativados')

            priced_lines = []
            for product_id, quantity in lines:
                product = products[product_id]
                if product.stock_quantity < quantity:
                    raise ValidationError(
                        'INSUFFICIENT_STOCK',
                        f"Estoque insuficiente para {product.name}. Atual: {product.stock_quantity}, solicitado: {quantity}",
                        details={'product': {
                            'id': product.id,
                            'name': product.name,
                            'current_stock': product.stock_quantity,
                            'requested_quantity': quantity,
                        }},
                    )
                priced_lines.append((product, quantity, line_total(product.price, quantity)))

            total = order_total(subtotal for _, _, subtotal in priced_lines)
            now = to_iso(self.clock())
            order_id = new_id()
            order_number = generate_order_number()

            conn.execute(
                "INSERT INTO orders(id, user_id, order_number, total_amount, status, payment_status, "
                "shipping_address, notes, created_at, updated_at) VALUES (?,?,?,?,'pending','pending',?,?,?,?)",
                (order_id, user_id, order_number, money_str(total), shipping_address, notes, now, now),
            )

            for product, quantity, subtotal in priced_lines:
                conn.execute(
                    "INSERT INTO order_items(id, order_id, product_id, quantity, unit_price, total_price, created_at) "
                    "VALUES (?,?,?,?,?,?,?)",
                    (new_id(), order_id, product.id, quantity, money_str(product.price), money_str(subtotal), now),
                )
                # Baixa guardada: nunca deixa o estoque negativo
                cur = conn.execute(
                    "UPDATE products SET stock_quantity = stock_quantity - ?, updated_at = ? "
                    "WHERE id = ? AND stock_quantity >= ?",
                    (quantity, now, product.id, quantity),
                )
                if cur.rowcount != 1:
                    raise ConflictError('INSUFFICIENT_STOCK', f"Estoque de {product.name} alterado durante o pedido",
                                        details={'product': {'id': product.id, 'name': product.name}})
                conn.execute(
                    "INSERT INTO stock_movements(product_id, type, quantity, reason, order_id, created_at) "
                    "VALUES (?,?,?,?,?,?)",
                    (product.id, 'saida', quantity, 'Pedido', order_id, now),
                )

        log_event(f"Pedido criado: {order_number} ({len(priced_lines)} itens, total {money_str(total)})")
        return {
            'order_id': order_id,
            'order_number': order_number,
            'total_amount': money_str(total),
            'status': 'pending',
            'items_count': len(priced_lines),
            'created_at': now,
        }

    def _embed(self, orders: List[Order], product_fields: Sequence[str]) -> List[Dict[str, Any]]:
        """Anexa usuário e itens (com produto) a cada pedido"""
        if not orders:
            return []

        user_ids = list({o.user_id for o in orders})
        users = {
            r["id"]: User.from_row(r).summary()
            for r in self.db.query(f"SELECT * FROM users WHERE id IN ({_placeholders(user_ids)})", user_ids)
        }

        order_ids = [o.id for o in orders]
        item_rows = self.db.query(
            f"SELECT oi.*, p.name AS p_name, p.sku AS p_sku, p.price AS p_price "
            f"FROM order_items oi JOIN products p ON p.id = oi.product_id "
            f"WHERE oi.order_id IN ({_placeholders(order_ids)}) ORDER BY oi.created_at, oi.id",
            order_ids,
        )
        items: Dict[str, List[Dict[str, Any]]] = {oid: [] for oid in order_ids}
        for row in item_rows:
            item = OrderItem.from_row(row).to_dict()
            product = {'id': row["product_id"], 'name': row["p_name"], 'sku': row["p_sku"],
                       'price': money_str(Decimal(row["p_price"]))}
            item['product'] = {k: product[k] for k in product_fields}
            items[row["order_id"]].append(item)

        result = []
        for order in orders:
            data = order.to_dict()
            data['user'] = users.get(order.user_id)
            data['order_items'] = items[order.id]
            result.append(data)
        return result

    def list_orders(self, page: int = 1, limit: int = 10, status: Optional[str] = None,
                    user_id: Optional[str] = None) -> Dict[str, Any]:
        where = []
        params: List[Any] = []
        if status:
            where.append("status = ?")
            params.append(status)
        if user_id:
            where.append("user_id = ?")
            params.append(user_id)
        clause = f" WHERE {' AND '.join(where)}" if where else ""

        total = self.db.query_one(f"SELECT COUNT(*) FROM orders{clause}", params)[0]
        rows = self.db.query(
            f"SELECT * FROM orders{clause} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            params + [limit, (page - 1) * limit],
        )
        orders = self._embed([Order.from_row(r) for r in rows], ('id', 'name', 'sku'))
        return {'orders': orders, 'pagination': _pagination(page, limit, total)}

    def get_order(self, order_id: str) -> Dict[str, Any]:
        row = self.db.query_one("SELECT * FROM orders WHERE id=?", (order_id,))
        if not row:
            raise NotFoundError('ORDER_NOT_FOUND', 'Pedido não encontrado')
        return self._embed([Order.from_row(row)], ('id', 'name', 'sku', 'price'))[0]

    def update_status(self, order_id: str, status: Optional[str] = None,
                      payment_status: Optional[str] = None) -> Dict[str, Any]:
        if not status and not payment_status:
            raise ValidationError('MISSING_UPDATE_FIELDS', 'Informe status ou payment_status')

        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone()
            if not row:
                raise NotFoundError('ORDER_NOT_FOUND', 'Pedido não encontrado')
            order = Order.from_row(row)

            if status:
                validate_status_transition(order.status, status)
                order.status = status
            if payment_status:
                order.payment_status = payment_status
            order.updated_at = to_iso(self.clock())

            conn.execute(
                "UPDATE orders SET status=?, payment_status=?, updated_at=? WHERE id=?",
                (order.status, order.payment_status, order.updated_at, order.id),
            )

        log_event(f"Pedido {order.order_number}: status={order.status}, pagamento={order.payment_status}")
        return {
            'order_id': order.id,
            'status': order.status,
            'payment_status': order.payment_status,
            'updated_at': order.updated_at,
        }


class PaymentService:
    """
    Pagamentos: cobrança, nova tentativa, reembolso e consultas.

    O gateway é chamado fora do lock de escrita: primeiro a leitura e as
    validações, depois o gateway, e só então uma transação curta que revalida
    o estado e grava o resultado. Falha do gateway é resultado de negócio
    (PaymentError): nada é gravado e o pedido não muda.
    """

    def __init__(self, db: Database, gateway: PaymentGateway, settings: Optional[Dict[str, Any]] = None,
                 clock: Clock = utc_now):
        settings = settings or {}
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.amount_tolerance = Decimal(str(settings.get('amount_tolerance', '0.01')))
        self.max_retries = int(settings.get('max_retries', 3))
        self.retry_interval = timedelta(minutes=float(settings.get('retry_interval_minutes', 5)))
        self.refund_window = timedelta(days=float(settings.get('refund_window_days', 30)))
        self.record_failed_attempts = bool(settings.get('record_failed_attempts', False))

    # --- helpers -----------------------------------------------------------

    @staticmethod
    def _load_order(conn: sqlite3.Connection, order_id: str) -> Order:
        row = conn.execute("SELECT * FROM orders WHERE id=?", (order_id,)).fetchone()
        if not row:
            raise NotFoundError('ORDER_NOT_FOUND', 'Pedido não encontrado')
        return Order.from_row(row)

    @staticmethod
    def _load_payment(conn: sqlite3.Connection, payment_id: str, user_id: str) -> Payment:
        row = conn.execute("SELECT * FROM payments WHERE id=?", (payment_id,)).fetchone()
        if not row:
            raise NotFoundError('PAYMENT_NOT_FOUND', 'Registro de pagamento não encontrado')
        payment = Payment.from_row(row)
        if payment.user_id != user_id:
            raise ForbiddenError('PAYMENT_ACCESS_DENIED', 'Sem permissão para este pagamento')
        return payment

    @staticmethod
    def _ensure_payable(order: Order) -> None:
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(*_UNPAYABLE_ORDER[order.status])

    def _ensure_retryable(self, payment: Payment, now: datetime) -> None:
        if not can_retry(payment, now, self.max_retries, self.retry_interval):
            raise ValidationError(
                'PAYMENT_NOT_RETRYABLE', 'Este pagamento não pode ser tentado novamente agora',
                details={'status': payment.status, 'retryCount': payment.retry_count,
                         'lastRetryAt': payment.last_retry_at},
            )

    def _ensure_refundable(self, payment: Payment, now: datetime) -> None:
        if not is_refundable(payment, now, self.refund_window):
            raise ValidationError(
                'REFUND_NOT_ELIGIBLE', 'Pagamento não elegível para reembolso',
                details={'status': payment.status, 'paymentMethod': payment.payment_method,
                         'processedAt': payment.processed_at},
            )

    @staticmethod
    def _insert_payment(conn: sqlite3.Connection, payment: Payment) -> None:
        conn.execute(
            "INSERT INTO payments(id, order_id, user_id, amount, payment_method, status, transaction_id, "
            "processed_at, transaction_date, notes, error_message, retry_count, last_retry_at, created_at, updated_at) "
            "VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (payment.id, payment.order_id, payment.user_id, money_str(payment.amount), payment.payment_method,
             payment.status, payment.transaction_id, payment.processed_at, payment.transaction_date,
             payment.notes, payment.error_message, payment.retry_count, payment.last_retry_at,
             payment.created_at, payment.updated_at),
        )

    @staticmethod
    def _save_payment(conn: sqlite3.Connection, payment: Payment) -> None:
        conn.execute(
            "UPDATE payments SET status=?, transaction_id=?, processed_at=?, refund_reason=?, "
            "refund_requested_at=?, refunded_at=?, refund_transaction_id=?, error_message=?, retry_count=?, "
            "last_retry_at=?, updated_at=? WHERE id=?",
            (payment.status, payment.transaction_id, payment.processed_at, payment.refund_reason,
             payment.refund_requested_at, payment.refunded_at, payment.refund_transaction_id,
             payment.error_message, payment.retry_count, payment.last_retry_at, payment.updated_at, payment.id),
        )

    @staticmethod
    def _set_order_state(conn: sqlite3.Connection, order: Order, status: str, payment_status: str,
                         now: datetime) -> None:
        order.status = status
        order.payment_status = payment_status
        order.updated_at = to_iso(now)
        conn.execute("UPDATE orders SET status=?, payment_status=?, updated_at=? WHERE id=?",
                     (status, payment_status, order.updated_at, order.id))

    def _new_payment(self, order_id: str, user_id: str, amount: Decimal, method: str,
                     notes: Optional[str], now: datetime) -> Payment:
        stamp = to_iso(now)
        return Payment(
            id=new_id(), order_id=order_id, user_id=user_id, amount=amount, payment_method=method,
            status='pending', transaction_id=generate_transaction_id('TXN'), processed_at=None,
            transaction_date=stamp, refund_reason=None, refund_requested_at=None, refunded_at=None,
            refund_transaction_id=None, notes=notes, error_message=None, retry_count=0, last_retry_at=None,
            created_at=stamp, updated_at=stamp,
        )

    # --- fluxos ------------------------------------------------------------

    def process_payment(self, order_id: str, payment_method: str, amount: Decimal, user_id: str,
                        notes: Optional[str] = None) -> Dict[str, Any]:
        with self.db.connection() as conn:
            order = self._load_order(conn, order_id)
        if order.user_id != user_id:
            raise ForbiddenError('ORDER_ACCESS_DENIED', 'Sem permissão para operar este pedido')
        self._ensure_payable(order)
        if not amounts_match(order.total_amount, amount, self.amount_tolerance):
            raise ValidationError(
                'PAYMENT_AMOUNT_MISMATCH', 'Valor do pagamento não confere com o total do pedido',
                details={'expected_amount': money_str(order.total_amount), 'amount': money_str(amount)},
            )
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError('INVALID_PAYMENT_METHOD', 'Forma de pagamento não suportada')

        attempt = self._new_payment(order.id, user_id, amount, payment_method, notes, self.clock())
        log_debug(f"Cobrança enviada ao gateway: pedido {order.order_number}, {money_str(amount)} ({payment_method})")
        result = self.gateway.attempt_charge(amount, payment_method)
        if not result.success:
            failure = PaymentError('PAYMENT_FAILED', result.error or 'Falha no processamento do pagamento',
                                   details={'reason': result.error})
            log_warning(f"Pagamento recusado para o pedido {order_id}: {failure.message}")
            if self.record_failed_attempts:
                self._record_failed_attempt(attempt, failure.message)
                failure.details['paymentId'] = attempt.id
            raise failure

        with self.db.transaction() as conn:
            # O pedido pode ter sido pago ou cancelado enquanto o gateway respondia
            order = self._load_order(conn, order_id)
            self._ensure_payable(order)

            now = self.clock()
            attempt.transaction_id = result.transaction_id or attempt.transaction_id
            stamp_payment_status(attempt, 'completed', now)
            self._insert_payment(conn, attempt)
            self._set_order_state(conn, order, 'completed', 'paid', now)

        log_event(f"Pagamento concluído: pedido {order.order_number}, transação {attempt.transaction_id}")
        return {
            'transactionId': attempt.transaction_id,
            'paymentId': attempt.id,
            'message': 'Pagamento realizado com sucesso',
            'orderStatus': order.status,
        }

    def _record_failed_attempt(self, attempt: Payment, reason: str) -> None:
        """Grava a tentativa recusada como pagamento 'failed'"""
        now = self.clock()
        attempt.status = 'failed'
        attempt.error_message = reason
        attempt.updated_at = to_iso(now)
        with self.db.transaction() as conn:
            self._insert_payment(conn, attempt)

    def retry_payment(self, payment_id: str, user_id: str) -> Dict[str, Any]:
        with self.db.connection() as conn:
            payment = self._load_payment(conn, payment_id, user_id)
            self._ensure_retryable(payment, self.clock())
            order = self._load_order(conn, payment.order_id)
        self._ensure_payable(order)

        log_debug(f"Nova tentativa enviada ao gateway: pagamento {payment.id}")
        result = self.gateway.attempt_charge(payment.amount, payment.payment_method)

        with self.db.transaction() as conn:
            current = self._load_payment(conn, payment_id, user_id)
            if current.status != payment.status or current.retry_count != payment.retry_count:
                raise ConflictError('PAYMENT_RETRY_CONFLICT', 'Pagamento alterado por outra tentativa simultânea',
                                    details={'status': current.status, 'retryCount': current.retry_count})
            payment = current
            now = self.clock()
            payment.retry_count += 1
            payment.last_retry_at = to_iso(now)

            failure: Optional[PaymentError] = None
            if result.success:
                order = self._load_order(conn, payment.order_id)
                self._ensure_payable(order)
                payment.transaction_id = result.transaction_id or payment.transaction_id
                payment.error_message = None
                stamp_payment_status(payment, 'completed', now)
                self._save_payment(conn, payment)
                self._set_order_state(conn, order, 'completed', 'paid', now)
            else:
                # Só a contagem de tentativas é persistida; o pedido não muda
                payment.error_message = result.error
                payment.updated_at = to_iso(now)
                self._save_payment(conn, payment)
                failure = PaymentError('PAYMENT_FAILED', result.error or 'Falha no processamento do pagamento',
                                       details={'reason': result.error, 'paymentId': payment.id,
                                                'retryCount': payment.retry_count})

        if failure:
            log_warning(f"Nova tentativa recusada para o pagamento {payment_id}: {failure.message}")
            raise failure

        log_event(f"Nova tentativa concluída: pagamento {payment.id}, transação {payment.transaction_id}")
        return {
            'transactionId': payment.transaction_id,
            'paymentId': payment.id,
            'message': 'Pagamento realizado com sucesso',
            'orderStatus': order.status,
            'retryCount': payment.retry_count,
        }

    def refund_payment(self, payment_id: str, user_id: str, reason: str) -> Dict[str, Any]:
        with self.db.connection() as conn:
            payment = self._load_payment(conn, payment_id, user_id)
        requested_at = self.clock()
        self._ensure_refundable(payment, requested_at)

        log_debug(f"Reembolso enviado ao gateway: pagamento {payment.id}, transação {payment.transaction_id}")
        result = self.gateway.attempt_refund(payment.amount, payment.transaction_id)
        if not result.success:
            log_warning(f"Reembolso recusado para o pagamento {payment_id}: {result.error}")
            raise PaymentError('REFUND_FAILED', result.error or 'Falha no processamento do reembolso',
                               details={'reason': result.error})

        with self.db.transaction() as conn:
            # Outro reembolso pode ter sido concluído enquanto o gateway respondia
            payment = self._load_payment(conn, payment_id, user_id)
            self._ensure_refundable(payment, requested_at)
            order = self._load_order(conn, payment.order_id)

            now = self.clock()
            payment.refund_reason = reason
            payment.refund_requested_at = to_iso(requested_at)
            payment.refund_transaction_id = result.transaction_id
            stamp_payment_status(payment, 'refunded', now)
            self._save_payment(conn, payment)
            self._set_order_state(conn, order, 'refunded', 'refunded', now)

        log_event(f"Reembolso concluído: pagamento {payment.id}, transação {payment.refund_transaction_id}")
        return {
            'refundTransactionId': payment.refund_transaction_id,
            'paymentId': payment.id,
            'message': 'Reembolso realizado com sucesso',
            'orderStatus': order.status,
        }

    # --- consultas ---------------------------------------------------------

    def _with_order_summary(self, payments: List[Payment]) -> List[Dict[str, Any]]:
        if not payments:
            return []
        order_ids = list({p.order_id for p in payments})
        orders = {
            r["id"]: {'id': r["id"], 'orderNumber': r["order_number"],
                      'totalAmount': money_str(Decimal(r["total_amount"])), 'status': r["status"]}
            for r in self.db.query(
                f"SELECT id, order_number, total_amount, status FROM orders WHERE id IN ({_placeholders(order_ids)})",
                order_ids,
            )
        }
        result = []
        for payment in payments:
            data = payment.to_dict()
            data['order'] = orders.get(payment.order_id)
            result.append(data)
        return result

    def payment_history(self, user_id: str, page: int = 1, limit: int = 10, status: Optional[str] = None,
                        payment_method: Optional[str] = None) -> Dict[str, Any]:
        where = ["user_id = ?"]
        params: List[Any] = [user_id]
        if status:
            where.append("status = ?")
            params.append(status)
        if payment_method:
            where.append("payment_method = ?")
            params.append(payment_method)
        clause = " AND ".join(where)

        total = self.db.query_one(f"SELECT COUNT(*) FROM payments WHERE {clause}", params)[0]
        rows = self.db.query(
            f"SELECT * FROM payments WHERE {clause} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            params + [limit, (page - 1) * limit],
        )
        return {
            'payments': self._with_order_summary([Payment.from_row(r) for r in rows]),
            'pagination': _pagination(page, limit, total),
        }

    def get_payment(self, payment_id: str, user_id: str) -> Dict[str, Any]:
        with self.db.connection() as conn:
            payment = self._load_payment(conn, payment_id, user_id)
        return self._with_order_summary([payment])[0]

    def order_payments(self, order_id: str, user_id: str) -> List[Dict[str, Any]]:
        order_row = self.db.query_one("SELECT user_id FROM orders WHERE id=?", (order_id,))
        if not order_row:
            raise NotFoundError('ORDER_NOT_FOUND', 'Pedido não encontrado')
        if order_row["user_id"] != user_id:
            raise ForbiddenError('ORDER_ACCESS_DENIED', 'Sem permissão para operar este pedido')
        rows = self.db.query("SELECT * FROM payments WHERE order_id=? ORDER BY created_at DESC", (order_id,))
        return [Payment.from_row(r).to_dict() for r in rows]

    def payment_stats(self, user_id: str, period: str = 'monthly') -> Dict[str, Any]:
        now = self.clock()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if period == 'daily':
            start = midnight
        elif period == 'weekly':
            start = now - timedelta(days=7)
        elif period == 'yearly':
            start = midnight.replace(month=1, day=1)
        else:
            start = midnight.replace(day=1)

        rows = self.db.query(
            "SELECT amount FROM payments WHERE user_id=? AND status='completed' AND created_at >= ?",
            (user_id, to_iso(start)),
        )
        amounts = [Decimal(r["amount"]) for r in rows]
        total = sum(amounts, Decimal('0.00'))
        average = (total / len(amounts)) if amounts else Decimal('0.00')
        return {
            'period': period,
            'totalAmount': money_str(total),
            'totalPayments': len(amounts),
            'averageAmount': money_str(average),
            'startDate': to_iso(start),
            'endDate': to_iso(now),
        }
