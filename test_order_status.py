"""Testes da atualização de status do pedido (PATCH /api/orders/<id>/status)."""

import uuid

import pytest


@pytest.fixture
def order_id(client, user, create_product):
    product = create_product(stock=10)
    response = client.post('/api/orders', json={'user_id': user.id,
                                                'products': [{'product_id': product.id, 'quantity': 1}]})
    return response.get_json()['data']['order_id']


def patch_status(client, order_id, **body):
    return client.patch(f'/api/orders/{order_id}/status', json=body)


def current_order(client, order_id):
    return client.get(f'/api/orders/{order_id}').get_json()['data']


class TestStatusMachine:
    def test_pending_to_completed_is_rejected(self, client, order_id):
        response = patch_status(client, order_id, status='completed')

        assert response.status_code == 400
        body = response.get_json()
        assert body['error'] == 'INVALID_STATUS_TRANSITION'
        assert body['current_status'] == 'pending'
        assert body['requested_status'] == 'completed'
        assert current_order(client, order_id)['status'] == 'pending'

    def test_repeated_illegal_transition_is_idempotent(self, client, order_id):
        before = current_order(client, order_id)

        first = patch_status(client, order_id, status='completed')
        second = patch_status(client, order_id, status='completed')

        assert first.status_code == second.status_code == 400
        assert first.get_json() == second.get_json()
        assert current_order(client, order_id) == before

    def test_full_lifecycle(self, client, clock, order_id):
        clock.advance(minutes=2)
        response = patch_status(client, order_id, status='processing')
        assert response.status_code == 200
        data = response.get_json()['data']
        assert data == {'order_id': order_id, 'status': 'processing', 'payment_status': 'pending',
                        'updated_at': clock().isoformat(timespec='microseconds')}

        assert patch_status(client, order_id, status='completed', payment_status='paid').status_code == 200
        order = current_order(client, order_id)
        assert (order['status'], order['payment_status']) == ('completed', 'paid')

    @pytest.mark.parametrize('path', [['cancelled'], ['processing', 'cancelled']])
    def test_cancellation_is_terminal(self, client, order_id, path):
        for status in path:
            assert patch_status(client, order_id, status=status).status_code == 200

        for target in ('pending', 'processing', 'completed'):
            response = patch_status(client, order_id, status=target)
            assert response.get_json()['error'] == 'INVALID_STATUS_TRANSITION'
        assert current_order(client, order_id)['status'] == 'cancelled'

    def test_payment_status_is_independent(self, client, order_id):
        for payment_status in ('failed', 'paid', 'pending'):
            response = patch_status(client, order_id, payment_status=payment_status)
            assert response.status_code == 200
            assert response.get_json()['data']['payment_status'] == payment_status
        assert current_order(client, order_id)['status'] == 'pending'

    def test_rejected_transition_does_not_apply_payment_status(self, client, order_id):
        patch_status(client, order_id, status='completed', payment_status='paid')
        assert current_order(client, order_id)['payment_status'] == 'pending'


class TestStatusValidation:
    def test_missing_fields(self, client, order_id):
        response = patch_status(client, order_id)
        assert response.status_code == 400
        assert response.get_json()['error'] == 'MISSING_UPDATE_FIELDS'

    def test_invalid_values(self, client, order_id):
        invalid_status = patch_status(client, order_id, status='shipped').get_json()
        assert invalid_status['error'] == 'INVALID_STATUS'
        assert 'processing' in invalid_status['valid_statuses']

        assert patch_status(client, order_id, payment_status='refunded').get_json()['error'] == 'INVALID_PAYMENT_STATUS'

    def test_unknown_order(self, client):
        response = patch_status(client, str(uuid.uuid4()), status='processing')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'ORDER_NOT_FOUND'
