"""
Servidor Web Flask da API do ERP
================================
Pedidos, pagamentos, catálogo de produtos e usuários via JSON
"""

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from functools import wraps
from typing import Any, Callable, Dict, Optional
from werkzeug.exceptions import HTTPException
import socket
import sqlite3

from core.config import get_database_path
from core.database import Database, to_iso, utc_now
from core.errors import AuthenticationError, ERPError, ForbiddenError, ValidationError
from core.gateway import PaymentGateway, SimulatedGateway
from core.logger import log_error, log_event, log_warning
from core.models import PAYMENT_METHOD_CATALOG, PAYMENT_STATUS_CATALOG
from core.services import AuthService, OrderService, PaymentService, ProductService
from core.validation import (
    require_json_object, validate_history_query, validate_order_input, validate_pagination,
    validate_payment_data, validate_refund_data, validate_stats_period, validate_status_update,
)


def _integrity_error_body(e: sqlite3.IntegrityError):
    """Traduz violações de restrição do SQLite em (código, mensagem, status)"""
    text = str(e)
    if 'UNIQUE' in text:
        if 'orders.order_number' in text:
            return 'DUPLICATE_ORDER_NUMBER', 'Número de pedido duplicado, tente novamente', 409
        return 'DUPLICATE_ENTRY', 'Registro duplicado', 409
    if 'FOREIGN KEY' in text:
        return 'FOREIGN_KEY_VIOLATION', 'Referência a registro inexistente', 400
    return 'VALIDATION_ERROR', f'Dados inválidos: {text}', 400


class WebServer:
    """Servidor web Flask da API"""

    def __init__(self, config: Dict[str, Any], gateway: Optional[PaymentGateway] = None,
                 db: Optional[Database] = None, clock: Callable = utc_now):
        """
        Inicializa o servidor web

        Args:
            config: Configurações carregadas por load_config()
            gateway: Gateway de pagamento (padrão: SimulatedGateway com os parâmetros do config)
            db: Banco já aberto (padrão: abre o caminho configurado)
            clock: Fonte de data/hora UTC, substituível em testes
        """
        self.config = config
        self.host = config['server'].get('host', '0.0.0.0')
        self.port = int(config['server'].get('port', 5000))
        self.debug = bool(config['server'].get('debug', False))
        self.db = db or Database(get_database_path(config))
        self.db_path = self.db.db_path

        security = config['security']
        self.auth = AuthService(self.db, security['secret_key'], int(security.get('token_max_age', 86400)), clock)
        self.products = ProductService(self.db, clock)
        self.orders = OrderService(self.db, clock)
        self.payments = PaymentService(self.db, gateway or SimulatedGateway.from_config(config['payments']),
                                       config['payments'], clock)

        self.order_limits = config.get('orders', {})
        self.pagination = config.get('pagination', {})

        self.app = Flask(__name__)
        CORS(self.app)  # Permite requisições de qualquer origem

        self._setup_error_handlers()
        self._setup_routes()

    # ------------------------------------------------------------------
    # Autenticação
    # ------------------------------------------------------------------

    def require_auth(self, admin: bool = False):
        """Decorator: exige token Bearer válido e guarda o usuário em g.current_user"""
        def decorator(view):
            @wraps(view)
            def wrapper(*args, **kwargs):
                header = request.headers.get('Authorization', '')
                token = header[7:].strip() if header.startswith('Bearer ') else None
                g.current_user = self.auth.user_from_token(token)
                if admin and not g.current_user.is_admin:
                    raise ForbiddenError('INSUFFICIENT_PERMISSIONS', 'Acesso restrito a administradores')
                return view(*args, **kwargs)
            return wrapper
        return decorator

    def _page_args(self):
        return (int(self.pagination.get('default_limit', 10)), int(self.pagination.get('max_limit', 100)))

    # ------------------------------------------------------------------
    # Erros
    # ------------------------------------------------------------------

    def _setup_error_handlers(self):
        """Converte exceções em respostas JSON padronizadas"""

        @self.app.errorhandler(ERPError)
        def handle_business_error(e: ERPError):
            return jsonify(e.to_dict()), e.status_code

        @self.app.errorhandler(sqlite3.IntegrityError)
        def handle_integrity_error(e: sqlite3.IntegrityError):
            code, message, status = _integrity_error_body(e)
            log_warning(f"Violação de restrição no banco ({request.path}): {e}")
            return jsonify({'success': False, 'message': message, 'error': code}), status

        @self.app.errorhandler(sqlite3.DatabaseError)
        def handle_database_error(e: sqlite3.DatabaseError):
            log_error(f"Erro de banco de dados em {request.method} {request.path}", e)
            body = {'success': False, 'message': 'Erro no banco de dados', 'error': 'DATABASE_ERROR'}
            if self.debug:
                body['debug'] = str(e)
            return jsonify(body), 500

        @self.app.errorhandler(HTTPException)
        def handle_http_error(e: HTTPException):
            if e.code == 404:
                code = 'NOT_FOUND'
                message = f'Rota {request.path} não encontrada'
            else:
                code = (e.name or 'HTTP_ERROR').upper().replace(' ', '_')
                message = e.description or e.name
            return jsonify({'success': False, 'message': message, 'error': code}), e.code

        @self.app.errorhandler(Exception)
        def handle_unexpected_error(e: Exception):
            log_error(f"Erro inesperado em {request.method} {request.path}", e)
            body = {'success': False, 'message': 'Erro interno do servidor', 'error': 'INTERNAL_SERVER_ERROR'}
            if self.debug:
                body['debug'] = str(e)
            return jsonify(body), 500

    # ------------------------------------------------------------------
    # Rotas
    # ------------------------------------------------------------------

    def _setup_routes(self):
        """Configura as rotas da API"""
        require_auth = self.require_auth

        # API: Saúde do serviço e integridade do banco
        @self.app.route('/api/health', methods=['GET'])
        def health():
            ok, message = self.db.verify_integrity()
            return jsonify({
                'success': ok,
                'status': 'ok' if ok else 'error',
                'database': message,
                'timestamp': to_iso(utc_now()),
            }), 200 if ok else 503

        # === AUTENTICAÇÃO E USUÁRIOS ===

        @self.app.route('/api/auth/login', methods=['POST'])
        def login():
            """Troca e-mail/senha por um token de acesso"""
            data = require_json_object(request.get_json(silent=True))
            email = data.get('email')
            password = data.get('password')
            if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
                raise ValidationError('MISSING_CREDENTIALS', 'E-mail e senha são obrigatórios')

            user = self.auth.authenticate(email.strip().lower(), password)
            if not user:
                log_warning(f"Falha de login para {email}")
                raise AuthenticationError('INVALID_CREDENTIALS', 'E-mail ou senha inválidos')

            log_event(f"Login: {user.email}")
            return jsonify({
                'success': True,
                'data': {'token': self.auth.issue_token(user), 'user': user.to_dict()},
            })

        @self.app.route('/api/users', methods=['POST'])
        @require_auth(admin=True)
        def create_user():
            """Cadastra usuário (somente administradores)"""
            data = require_json_object(request.get_json(silent=True))
            name = data.get('name')
            email = data.get('email')
            password = data.get('password')
            if not all(isinstance(v, str) and v.strip() for v in (name, email, password)):
                raise ValidationError('MISSING_USER_FIELDS', 'Nome, e-mail e senha são obrigatórios')

            user = self.auth.create_user(name.strip(), email.strip().lower(), password,
                                         data.get('role') or 'employee')
            return jsonify({'success': True, 'data': user.to_dict(), 'message': 'Usuário criado com sucesso'}), 201

        # === PRODUTOS ===

        @self.app.route('/api/products', methods=['GET'])
        def get_products():
            """Lista produtos ativos (low_stock=true filtra estoque baixo)"""
            low_stock = str(request.args.get('low_stock', '')).lower() in ('1', 'true', 'yes')
            products = self.products.list_products(low_stock=low_stock)
            return jsonify({'success': True, 'data': [p.to_dict() for p in products]})

        @self.app.route('/api/products/<product_id>', methods=['GET'])
        def get_product(product_id):
            return jsonify({'success': True, 'data': self.products.get_product(product_id).to_dict()})

        @self.app.route('/api/products', methods=['POST'])
        @require_auth(admin=True)
        def create_product():
            """Cadastra produto com estoque inicial (somente administradores)"""
            data = require_json_object(request.get_json(silent=True))
            product = self.products.create_product(data)
            return jsonify({'success': True, 'data': product.to_dict(), 'message': 'Produto criado com sucesso'}), 201

        # === PEDIDOS ===

        @self.app.route('/api/orders', methods=['POST'])
        def create_order():
            """Cria pedido e baixa o estoque"""
            data = require_json_object(request.get_json(silent=True))
            order_input = validate_order_input(
                data,
                max_products=int(self.order_limits.get('max_products', 100)),
                max_quantity=int(self.order_limits.get('max_quantity', 10000)),
            )
            result = self.orders.create_order(**order_input)
            return jsonify({'success': True, 'message': 'Pedido criado com sucesso', 'data': result}), 201

        @self.app.route('/api/orders', methods=['GET'])
        def get_orders():
            """Lista pedidos (mais recentes primeiro) com paginação"""
            page, limit = validate_pagination(request.args, *self._page_args())
            result = self.orders.list_orders(
                page=page, limit=limit,
                status=request.args.get('status') or None,
                user_id=request.args.get('user_id') or None,
            )
            return jsonify({'success': True, 'data': result})

        @self.app.route('/api/orders/<order_id>', methods=['GET'])
        def get_order(order_id):
            return jsonify({'success': True, 'data': self.orders.get_order(order_id)})

        @self.app.route('/api/orders/<order_id>/status', methods=['PATCH'])
        def update_order_status(order_id):
            """Atualiza status e/ou status de pagamento do pedido"""
            data = require_json_object(request.get_json(silent=True))
            status, payment_status = validate_status_update(data)
            result = self.orders.update_status(order_id, status=status, payment_status=payment_status)
            return jsonify({'success': True, 'message': 'Status do pedido atualizado', 'data': result})

        # === PAGAMENTOS ===

        @self.app.route('/api/payments/process', methods=['POST'])
        @require_auth()
        def process_payment():
            data = validate_payment_data(require_json_object(request.get_json(silent=True)))
            result = self.payments.process_payment(
                order_id=data['order_id'],
                payment_method=data['payment_method'],
                amount=data['amount'],
                user_id=g.current_user.id,
                notes=data['notes'],
            )
            return jsonify({'success': True, 'data': result, 'message': 'Pagamento processado com sucesso'})

        @self.app.route('/api/payments/history', methods=['GET'])
        @require_auth()
        def payment_history():
            query = validate_history_query(request.args, *self._page_args())
            result = self.payments.payment_history(g.current_user.id, **query)
            return jsonify({'success': True, 'data': result})

        @self.app.route('/api/payments/stats', methods=['GET'])
        @require_auth()
        def payment_stats():
            period = validate_stats_period(request.args)
            return jsonify({'success': True, 'data': self.payments.payment_stats(g.current_user.id, period)})

        @self.app.route('/api/payments/methods', methods=['GET'])
        def payment_methods():
            return jsonify({'success': True, 'data': PAYMENT_METHOD_CATALOG})

        @self.app.route('/api/payments/statuses', methods=['GET'])
        def payment_statuses():
            return jsonify({'success': True, 'data': PAYMENT_STATUS_CATALOG})

        @self.app.route('/api/payments/order/<order_id>', methods=['GET'])
        @require_auth()
        def order_payments(order_id):
            payments = self.payments.order_payments(order_id, g.current_user.id)
            return jsonify({'success': True, 'data': payments})

        @self.app.route('/api/payments/<payment_id>', methods=['GET'])
        @require_auth()
        def get_payment(payment_id):
            return jsonify({'success': True, 'data': self.payments.get_payment(payment_id, g.current_user.id)})

        @self.app.route('/api/payments/<payment_id>/refund', methods=['POST'])
        @require_auth()
        def refund_payment(payment_id):
            reason = validate_refund_data(require_json_object(request.get_json(silent=True)))
            result = self.payments.refund_payment(payment_id, g.current_user.id, reason)
            return jsonify({'success': True, 'data': result, 'message': 'Reembolso processado com sucesso'})

        @self.app.route('/api/payments/<payment_id>/retry', methods=['POST'])
        @require_auth()
        def retry_payment(payment_id):
            result = self.payments.retry_payment(payment_id, g.current_user.id)
            return jsonify({'success': True, 'data': result, 'message': 'Pagamento processado com sucesso'})

    def get_local_ip(self) -> str:
        """Retorna o IP local da máquina"""
        try:
            # Conectar a um endereço externo para descobrir o IP local
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            s.connect(("8.8.8.8", 80))
            local_ip = s.getsockname()[0]
            s.close()
            return local_ip
        except OSError:
            return "127.0.0.1"

    def run(self):
        """Inicia o servidor Flask"""
        local_ip = self.get_local_ip()

        print("=" * 60)
        print("🌐 API DO ERP INICIADA")
        print("=" * 60)
        print(f"📱 Acesso Local:  http://localhost:{self.port}/api/health")
        print(f"🌍 Acesso Rede:   http://{local_ip}:{self.port}/api/health")
        print(f"🗄️  Banco:         {self.db_path}")
        print("=" * 60)

        self.app.run(
            host=self.host,
            port=self.port,
            debug=self.debug,
            use_reloader=False,
            threaded=True,
        )


def start_server(config: Dict[str, Any], gateway: Optional[PaymentGateway] = None):
    """
    Função helper para configurar e iniciar o servidor

    Args:
        config: Configurações carregadas por load_config()
        gateway: Gateway de pagamento alternativo (opcional)
    """
    try:
        print("🔧 Configurando servidor Flask...")
        server = WebServer(config, gateway=gateway)
        admin = config.get('admin', {})
        server.auth.ensure_default_admin(admin.get('name', 'Administrador'),
                                         admin.get('email', 'admin@erp.local'),
                                         admin.get('password', 'admin'))
        print(f"🚀 Iniciando servidor na porta {server.port}...")
        server.run()
    except Exception as e:
        log_error("ERRO CRÍTICO no servidor Flask", e)
        raise
