# -*- coding: utf-8 -*-
# Gestão ERP – API de Pedidos e Pagamentos (Flask + SQLite)
# ---------------------------------------------------------
# Requisitos:
#   pip install -e .
#
# Observações:
# - Banco de dados SQLite local: ~/.gestao_erp/erp.db (ou database_path no config.yaml)
# - Configuração em ~/.gestao_erp/config.yaml (ou $ERP_CONFIG)
# - Módulos: Pedidos, Pagamentos (gateway simulado), Produtos, Usuários
#
# Como executar:
#   python GestaoERP.py                    # inicia a API (mesmo que "serve")
#   python GestaoERP.py init-db            # cria/valida o banco e o admin padrão
#   python GestaoERP.py create-user --name "Ana" --email ana@empresa.com --password segredo
#   python GestaoERP.py create-product --name "Teclado" --price 99.90 --stock 50

import argparse
import sqlite3
import sys
from typing import List, Optional

from core.config import get_database_path, load_config, validate_database_path
from core.database import Database
from core.errors import ERPError
from core.logger import log_error, log_event, log_startup, setup_logging
from core.services import AuthService, ProductService


def _open_database(config) -> Database:
    db_path = get_database_path(config)
    ok, message = validate_database_path(db_path)
    if not ok:
        raise SystemExit(f"❌ Banco de dados inválido ({db_path}): {message}")
    log_event(f"📁 Caminho do banco: {db_path} ({message})")
    return Database(db_path)


def _auth_service(config, db: Database) -> AuthService:
    security = config['security']
    return AuthService(db, security['secret_key'], int(security.get('token_max_age', 86400)))


def _ensure_admin(config, auth: AuthService) -> None:
    admin = config['admin']
    auth.ensure_default_admin(admin['name'], admin['email'].lower(), admin['password'])


def cmd_serve(args, config) -> int:
    from core.web_server import start_server

    if args.host:
        config['server']['host'] = args.host
    if args.port:
        config['server']['port'] = args.port
    if args.debug:
        config['server']['debug'] = True

    start_server(config)
    return 0


def cmd_init_db(args, config) -> int:
    db = _open_database(config)
    _ensure_admin(config, _auth_service(config, db))
    ok, message = db.verify_integrity()
    print(f"{'✅' if ok else '❌'} {db.db_path}: {message}")
    return 0 if ok else 1


def cmd_create_user(args, config) -> int:
    auth = _auth_service(config, _open_database(config))
    user = auth.create_user(args.name, args.email.strip().lower(), args.password, args.role)
    print(f"✅ Usuário criado: {user.email} (id: {user.id}, perfil: {user.role})")
    return 0


def cmd_create_product(args, config) -> int:
    products = ProductService(_open_database(config))
    product = products.create_product({
        'name': args.name,
        'price': args.price,
        'stock_quantity': args.stock,
        'sku': args.sku,
        'category': args.category,
        'description': args.description,
    })
    print(f"✅ Produto criado: {product.name} (id: {product.id}, estoque: {product.stock_quantity})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='GestaoERP', description='API de pedidos e pagamentos do Gestão ERP')
    parser.add_argument('--config', help='Caminho do config.yaml (padrão: $ERP_CONFIG ou ~/.gestao_erp/config.yaml)')
    # sem subcomando: serve
    parser.set_defaults(func=cmd_serve, host=None, port=None, debug=False)
    sub = parser.add_subparsers(dest='command')

    serve = sub.add_parser('serve', help='Inicia o servidor da API')
    serve.add_argument('--host')
    serve.add_argument('--port', type=int)
    serve.add_argument('--debug', action='store_true')
    serve.set_defaults(func=cmd_serve)

    init_db = sub.add_parser('init-db', help='Cria/valida o banco de dados e o administrador padrão')
    init_db.set_defaults(func=cmd_init_db)

    user = sub.add_parser('create-user', help='Cadastra um usuário')
    user.add_argument('--name', required=True)
    user.add_argument('--email', required=True)
    user.add_argument('--password', required=True)
    user.add_argument('--role', choices=('admin', 'employee'), default='employee')
    user.set_defaults(func=cmd_create_user)

    product = sub.add_parser('create-product', help='Cadastra um produto com estoque inicial')
    product.add_argument('--name', required=True)
    product.add_argument('--price', required=True)
    product.add_argument('--stock', type=int, default=0)
    product.add_argument('--sku')
    product.add_argument('--category')
    product.add_argument('--description')
    product.set_defaults(func=cmd_create_product)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    log_path = setup_logging(config['logging'].get('dir') or None, config['logging'].get('level', 'INFO'))
    log_startup(get_database_path(config), log_path)

    try:
        return args.func(args, config)
    except ERPError as e:
        log_error(f"{e.code}: {e.message}")
        print(f"❌ {e.message} ({e.code})")
        return 1
    except sqlite3.IntegrityError as e:
        log_error("Violação de restrição no banco", e)
        print(f"❌ Registro duplicado ou inválido: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
