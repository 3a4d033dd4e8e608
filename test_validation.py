"""Testes da validação de entrada (ordem dos códigos de erro e limites)."""

import uuid
from decimal import Decimal

import pytest

from core.errors import ValidationError
from core.validation import (
    validate_history_query, validate_order_input, validate_pagination, validate_payment_data,
    validate_refund_data, validate_stats_period, validate_status_update,
)

USER_ID = str(uuid.uuid4())


def order_body(**overrides):
    body = {'user_id': USER_ID, 'products': [{'product_id': str(uuid.uuid4()), 'quantity': 1}]}
    body.update(overrides)
    return body


def error_code(func, *args, **kwargs):
    with pytest.raises(ValidationError) as exc:
        func(*args, **kwargs)
    return exc.value.code


class TestOrderInput:
    def test_valid_input(self):
        result = validate_order_input(order_body(shipping_address='Rua A, 10', notes='Entregar cedo'))
        assert result['user_id'] == USER_ID
        assert len(result['lines']) == 1
        assert result['shipping_address'] == 'Rua A, 10'

    def test_missing_user_id_checked_before_products(self):
        assert error_code(validate_order_input, {'products': []}) == 'MISSING_USER_ID'

    @pytest.mark.parametrize('products', [None, [], 'abc'])
    def test_missing_or_empty_products(self, products):
        assert error_code(validate_order_input, order_body(products=products)) == 'MISSING_OR_EMPTY_PRODUCTS'

    def test_invalid_user_id_format(self):
        assert error_code(validate_order_input, order_body(user_id=['x'])) == 'INVALID_USER_ID_FORMAT'

    def test_per_item_codes(self):
        assert error_code(validate_order_input, order_body(products=[{'quantity': 1}])) == 'MISSING_PRODUCT_ID'
        assert error_code(validate_order_input,
                          order_body(products=[{'product_id': 'a', 'quantity': 0}])) == 'INVALID_QUANTITY'
        assert error_code(validate_order_input,
                          order_body(products=[{'product_id': 'a', 'quantity': '2'}])) == 'INVALID_QUANTITY'
        assert error_code(validate_order_input,
                          order_body(products=[{'product_id': 'a', 'quantity': 1.5}])) == 'QUANTITY_MUST_BE_INTEGER'
        assert error_code(validate_order_input,
                          order_body(products=[{'product_id': ['a'], 'quantity': 1}])) == 'INVALID_PRODUCT_ID_FORMAT'

    def test_item_error_reports_index(self):
        products = [{'product_id': 'a', 'quantity': 1}, {'product_id': 'b', 'quantity': -1}]
        with pytest.raises(ValidationError) as exc:
            validate_order_input(order_body(products=products))
        assert exc.value.details == {'index': 1}

    def test_whole_float_quantity_is_accepted(self):
        result = validate_order_input(order_body(products=[{'product_id': 'a', 'quantity': 3.0}]))
        assert result['lines'] == [('a', 3)]

    def test_optional_text_fields(self):
        assert error_code(validate_order_input, order_body(shipping_address=12)) == 'INVALID_SHIPPING_ADDRESS_FORMAT'
        assert error_code(validate_order_input, order_body(notes={'a': 1})) == 'INVALID_NOTES_FORMAT'

    def test_product_count_boundary(self):
        hundred = [{'product_id': f'p{i}', 'quantity': 1} for i in range(100)]
        assert len(validate_order_input(order_body(products=hundred))['lines']) == 100

        too_many = hundred + [{'product_id': 'p100', 'quantity': 1}]
        assert error_code(validate_order_input, order_body(products=too_many)) == 'TOO_MANY_PRODUCTS'

    def test_quantity_boundary(self):
        ok = validate_order_input(order_body(products=[{'product_id': 'a', 'quantity': 10000}]))
        assert ok['lines'] == [('a', 10000)]
        assert error_code(validate_order_input,
                          order_body(products=[{'product_id': 'a', 'quantity': 10001}])) == 'QUANTITY_TOO_LARGE'

    @pytest.mark.parametrize('quantities', [(1, 1), (1, 5), (7, 2)])
    def test_duplicate_products_always_rejected(self, quantities):
        products = [{'product_id': 'same', 'quantity': q} for q in quantities]
        assert error_code(validate_order_input, order_body(products=products)) == 'DUPLICATE_PRODUCTS'

    def test_limits_are_configurable(self):
        products = [{'product_id': 'a', 'quantity': 6}]
        assert error_code(validate_order_input, order_body(products=products),
                          max_quantity=5) == 'QUANTITY_TOO_LARGE'


class TestStatusUpdate:
    def test_requires_a_field(self):
        assert error_code(validate_status_update, {}) == 'MISSING_UPDATE_FIELDS'

    def test_invalid_values(self):
        assert error_code(validate_status_update, {'status': 'shipped'}) == 'INVALID_STATUS'
        assert error_code(validate_status_update, {'payment_status': 'refunded'}) == 'INVALID_PAYMENT_STATUS'

    def test_either_field_alone(self):
        assert validate_status_update({'status': 'processing'}) == ('processing', None)
        assert validate_status_update({'payment_status': 'paid'}) == (None, 'paid')


class TestPagination:
    def test_defaults(self):
        assert validate_pagination({}) == (1, 10)

    @pytest.mark.parametrize('page', ['0', '-1', 'abc'])
    def test_invalid_page(self, page):
        assert error_code(validate_pagination, {'page': page}) == 'INVALID_PAGE'

    @pytest.mark.parametrize('limit', ['0', '101', 'x'])
    def test_invalid_limit(self, limit):
        assert error_code(validate_pagination, {'limit': limit}) == 'INVALID_LIMIT'

    def test_max_limit_accepted(self):
        assert validate_pagination({'page': '3', 'limit': '100'}) == (3, 100)


class TestPaymentData:
    def test_valid(self):
        order_id = str(uuid.uuid4())
        data = validate_payment_data({'orderId': order_id, 'paymentMethod': 'credit_card',
                                      'amount': '199.98', 'notes': '  obs  '})
        assert data == {'order_id': order_id, 'payment_method': 'credit_card',
                        'amount': Decimal('199.98'), 'notes': 'obs'}

    def test_reports_every_invalid_field(self):
        with pytest.raises(ValidationError) as exc:
            validate_payment_data({'orderId': 'abc', 'paymentMethod': 'boleto', 'amount': 0, 'notes': 'x' * 501})
        assert exc.value.code == 'PAYMENT_VALIDATION_ERROR'
        fields = [d['field'] for d in exc.value.details['details']]
        assert fields == ['orderId', 'paymentMethod', 'amount', 'notes']

    @pytest.mark.parametrize('amount', ['0.01', 999999.99])
    def test_amount_bounds_accepted(self, amount):
        data = validate_payment_data({'orderId': str(uuid.uuid4()), 'paymentMethod': 'cash', 'amount': amount})
        assert data['amount'] == Decimal(str(amount))

    @pytest.mark.parametrize('amount', ['0.00', '1000000.00', None, 'dez', 1e30])
    def test_amount_out_of_range(self, amount):
        assert error_code(validate_payment_data, {'orderId': str(uuid.uuid4()), 'paymentMethod': 'cash',
                                                  'amount': amount}) == 'PAYMENT_VALIDATION_ERROR'


class TestOtherQueries:
    def test_refund_reason_length(self):
        assert validate_refund_data({'reason': '  Produto com defeito  '}) == 'Produto com defeito'
        assert error_code(validate_refund_data, {'reason': 'curto'}) == 'REFUND_VALIDATION_ERROR'
        assert error_code(validate_refund_data, {'reason': 'x' * 501}) == 'REFUND_VALIDATION_ERROR'

    def test_history_filters(self):
        query = validate_history_query({'status': 'completed', 'paymentMethod': 'debit_card'})
        assert query == {'page': 1, 'limit': 10, 'status': 'completed', 'payment_method': 'debit_card'}
        assert error_code(validate_history_query, {'status': 'x'}) == 'QUERY_VALIDATION_ERROR'
        assert error_code(validate_history_query, {'paymentMethod': 'x'}) == 'QUERY_VALIDATION_ERROR'

    def test_stats_period(self):
        assert validate_stats_period({}) == 'monthly'
        assert validate_stats_period({'period': 'yearly'}) == 'yearly'
        assert error_code(validate_stats_period, {'period': 'hourly'}) == 'STATS_VALIDATION_ERROR'
