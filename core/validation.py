# validation.py
# Validação dos dados de entrada da API (antes de qualquer acesso ao banco)

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.errors import ValidationError
from core.models import ORDER_PAYMENT_STATUSES, ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES
from core.rules import to_money

MIN_PAYMENT_AMOUNT = Decimal('0.01')
MAX_PAYMENT_AMOUNT = Decimal('999999.99')
STATS_PERIODS = ('daily', 'weekly', 'monthly', 'yearly')


def require_json_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError('VALIDATION_ERROR', 'Corpo da requisição deve ser um objeto JSON')
    return data


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_identifier(value: Any) -> bool:
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def _is_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def validate_order_input(data: Mapping[str, Any], max_products: int = 100,
                         max_quantity: int = 10000) -> Dict[str, Any]:
    """
    Valida o corpo de POST /orders.

    Returns:
        dict com user_id, lines [(product_id, quantity)], shipping_address e notes
    """
    user_id = data.get('user_id')
    products = data.get('products')
    shipping_address = data.get('shipping_address')
    notes = data.get('notes')

    if not user_id:
        raise ValidationError('MISSING_USER_ID', 'ID do usuário é obrigatório')

    if not products or not isinstance(products, list):
        raise ValidationError('MISSING_OR_EMPTY_PRODUCTS', 'Lista de produtos é obrigatória e não pode ser vazia')

    if not _is_identifier(user_id):
        raise ValidationError('INVALID_USER_ID_FORMAT', 'ID do usuário deve ser uma string válida')

    lines: List[Tuple[str, int]] = []
    for i, item in enumerate(products):
        product_id = item.get('product_id') if isinstance(item, dict) else None
        quantity = item.get('quantity') if isinstance(item, dict) else None

        if not product_id:
            raise ValidationError('MISSING_PRODUCT_ID', f'Item {i + 1} da lista de produtos sem product_id',
                                  details={'index': i})

        if not _is_number(quantity) or quantity <= 0:
            raise ValidationError('INVALID_QUANTITY', f'Quantidade do item {i + 1} deve ser um número maior que zero',
                                  details={'index': i})

        if isinstance(quantity, float) and not quantity.is_integer():
            raise ValidationError('QUANTITY_MUST_BE_INTEGER', f'Quantidade do item {i + 1} deve ser um número inteiro',
                                  details={'index': i})

        if not _is_identifier(product_id):
            raise ValidationError('INVALID_PRODUCT_ID_FORMAT', f'product_id do item {i + 1} tem formato inválido',
                                  details={'index': i})

        lines.append((str(product_id), int(quantity)))

    if shipping_address is not None and not isinstance(shipping_address, str):
        raise ValidationError('INVALID_SHIPPING_ADDRESS_FORMAT', 'Endereço de entrega deve ser texto')

    if notes is not None and not isinstance(notes, str):
        raise ValidationError('INVALID_NOTES_FORMAT', 'Observações do pedido devem ser texto')

    if len(lines) > max_products:
        raise ValidationError('TOO_MANY_PRODUCTS', f'Um pedido aceita no máximo {max_products} produtos')

    for i, (_, quantity) in enumerate(lines):
        if quantity > max_quantity:
            raise ValidationError('QUANTITY_TOO_LARGE', f'Quantidade do item {i + 1} excede o limite (máximo {max_quantity})',
                                  details={'index': i})

    product_ids = [product_id for product_id, _ in lines]
    if len(product_ids) != len(set(product_ids)):
        raise ValidationError('DUPLICATE_PRODUCTS', 'O pedido não pode conter produtos repetidos')

    return {
        'user_id': str(user_id),
        'lines': lines,
        'shipping_address': shipping_address or None,
        'notes': notes or None,
    }


def validate_status_update(data: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    status = data.get('status')
    payment_status = data.get('payment_status')

    if not status and not payment_status:
        raise ValidationError('MISSING_UPDATE_FIELDS', 'Informe status ou payment_status')

    if status and status not in ORDER_STATUSES:
        raise ValidationError('INVALID_STATUS', 'Status de pedido inválido',
                              details={'valid_statuses': list(ORDER_STATUSES)})

    if payment_status and payment_status not in ORDER_PAYMENT_STATUSES:
        raise ValidationError('INVALID_PAYMENT_STATUS', 'Status de pagamento inválido',
                              details={'valid_payment_statuses': list(ORDER_PAYMENT_STATUSES)})

    return status or None, payment_status or None


def validate_pagination(args: Mapping[str, Any], default_limit: int = 10,
                        max_limit: int = 100) -> Tuple[int, int]:
    page_raw = args.get('page')
    limit_raw = args.get('limit')

    try:
        page = int(page_raw) if page_raw not in (None, '') else 1
    except (TypeError, ValueError):
        page = 0
    if page < 1:
        raise ValidationError('INVALID_PAGE', 'Página deve ser um número maior que zero')

    try:
        limit = int(limit_raw) if limit_raw not in (None, '') else default_limit
    except (TypeError, ValueError):
        limit = 0
    if limit < 1 or limit > max_limit:
        raise ValidationError('INVALID_LIMIT', f'Itens por página deve estar entre 1 e {max_limit}')

    return page, limit


def validate_payment_data(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Valida o corpo de POST /payments/process (todos os erros de campo de uma vez)"""
    errors: List[Dict[str, str]] = []

    order_id = data.get('orderId')
    if not _is_uuid(order_id):
        errors.append({'field': 'orderId', 'message': 'ID do pedido deve ser um UUID válido'})

    payment_method = data.get('paymentMethod')
    if payment_method not in PAYMENT_METHODS:
        errors.append({'field': 'paymentMethod', 'message': 'Forma de pagamento inválida'})

    amount: Optional[Decimal] = None
    try:
        amount = to_money(data.get('amount'))
    except ValueError:
        amount = None
    if amount is None or not (MIN_PAYMENT_AMOUNT <= amount <= MAX_PAYMENT_AMOUNT):
        errors.append({'field': 'amount', 'message': 'Valor deve estar entre 0.01 e 999999.99'})

    notes = data.get('notes')
    if notes is not None:
        if not isinstance(notes, str):
            errors.append({'field': 'notes', 'message': 'Observação deve ser texto'})
        else:
            notes = notes.strip()
            if len(notes) > 500:
                errors.append({'field': 'notes', 'message': 'Observação não pode passar de 500 caracteres'})

    if errors:
        raise ValidationError('PAYMENT_VALIDATION_ERROR', 'Falha na validação dos dados de pagamento',
                              details={'details': errors})

    return {
        'order_id': order_id,
        'payment_method': payment_method,
        'amount': amount,
        'notes': notes or None,
    }


def validate_refund_data(data: Mapping[str, Any]) -> str:
    reason = data.get('reason')
    if not isinstance(reason, str) or not (10 <= len(reason.strip()) <= 500):
        raise ValidationError('REFUND_VALIDATION_ERROR', 'Falha na validação do reembolso',
                              details={'details': [{'field': 'reason',
                                                    'message': 'Motivo deve ter entre 10 e 500 caracteres'}]})
    return reason.strip()


def validate_history_query(args: Mapping[str, Any], default_limit: int = 10,
                           max_limit: int = 100) -> Dict[str, Any]:
    page, limit = validate_pagination(args, default_limit, max_limit)

    status = args.get('status') or None
    if status and status not in PAYMENT_STATUSES:
        raise ValidationError('QUERY_VALIDATION_ERROR', 'Status de pagamento inválido',
                              details={'details': [{'field': 'status', 'message': 'Valor inválido'}]})

    payment_method = args.get('paymentMethod') or None
    if payment_method and payment_method not in PAYMENT_METHODS:
        raise ValidationError('QUERY_VALIDATION_ERROR', 'Forma de pagamento inválida',
                              details={'details': [{'field': 'paymentMethod', 'message': 'Valor inválido'}]})

    return {'page': page, 'limit': limit, 'status': status, 'payment_method': payment_method}


def validate_stats_period(args: Mapping[str, Any]) -> str:
    period = args.get('period') or 'monthly'
    if period not in STATS_PERIODS:
        raise ValidationError('STATS_VALIDATION_ERROR', 'Período de estatística inválido',
                              details={'valid_periods': list(STATS_PERIODS)})
    return period
