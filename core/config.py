# config.py
# Configurações globais e leitura de YAML

from typing import Dict, Any, Optional
import copy
import os
import sqlite3

import yaml


def get_app_data_directory() -> str:
    """
    Retorna o diretório de dados da aplicação.
    Pode ser sobrescrito pela variável de ambiente ERP_DATA_DIR.
    """
    app_data_dir = os.getenv('ERP_DATA_DIR') or os.path.join(os.path.expanduser("~"), ".gestao_erp")
    os.makedirs(app_data_dir, exist_ok=True)
    return app_data_dir


# Valores padrão. O YAML do usuário é mesclado por cima destes.
DEFAULT_CONFIG: Dict[str, Any] = {
    'server': {
        'host': '0.0.0.0',
        'port': 5000,
        'debug': False,
    },
    'database_path': '',
    'logging': {
        'level': 'INFO',
        'dir': '',
    },
    'security': {
        'secret_key': 'troque-esta-chave',
        'token_max_age': 24 * 60 * 60,
    },
    'orders': {
        'max_products': 100,
        'max_quantity': 10000,
    },
    'payments': {
        'charge_delay': 1.0,
        'refund_delay': 1.5,
        'charge_success_rate': 0.9,
        'refund_success_rate': 0.95,
        'amount_tolerance': '0.01',
        'max_retries': 3,
        'retry_interval_minutes': 5,
        'refund_window_days': 30,
        'record_failed_attempts': False,
    },
    'pagination': {
        'default_limit': 10,
        'max_limit': 100,
    },
    'admin': {
        'name': 'Administrador',
        'email': 'admin@erp.local',
        'password': 'admin',
    },
}


def get_config_path() -> str:
    """Caminho do config.yaml (ERP_CONFIG tem prioridade)"""
    return os.getenv('ERP_CONFIG') or os.path.join(get_app_data_directory(), 'config.yaml')


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Carrega as configurações do arquivo YAML, mescladas sobre DEFAULT_CONFIG.

    Args:
        path: Caminho do arquivo (padrão: get_config_path())

    Returns:
        Dict[str, Any]: Dicionário com as configurações
    """
    path = path or get_config_path()
    data: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

    config = _deep_merge(DEFAULT_CONFIG, data)

    # Variáveis de ambiente sobrescrevem o arquivo
    if os.getenv('ERP_SECRET_KEY'):
        config['security']['secret_key'] = os.getenv('ERP_SECRET_KEY')
    if os.getenv('ERP_DATABASE_PATH'):
        config['database_path'] = os.getenv('ERP_DATABASE_PATH')
    return config


def save_config(data: Dict[str, Any], path: Optional[str] = None) -> None:
    """
    Salva as configurações no arquivo YAML.

    Args:
        data: Dicionário com as configurações para salvar
        path: Caminho do arquivo (padrão: get_config_path())
    """
    with open(path or get_config_path(), 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, allow_unicode=True)


def get_database_path(config: Dict[str, Any]) -> str:
    """
    Retorna o caminho do banco de dados.

    Usa o caminho configurado quando existir; caso contrário, erp.db no
    diretório de dados da aplicação.
    """
    db_path = config.get('database_path') or ''
    if db_path:
        return os.path.abspath(db_path)
    return os.path.abspath(os.path.join(get_app_data_directory(), 'erp.db'))


def validate_database_path(path: str) -> tuple[bool, str]:
    """
    Valida se um caminho de banco de dados é válido.

    Args:
        path: Caminho para validar

    Returns:
        tuple[bool, str]: (é_válido, mensagem)
    """
    if not path:
        return False, "Caminho vazio"

    path = os.path.abspath(path)

    if os.path.isfile(path):
        try:
            conn = sqlite3.connect(path)
            try:
                cur = conn.cursor()
                cur.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' "
                    "AND name IN ('users', 'products', 'orders', 'order_items', 'payments')"
                )
                tables = cur.fetchall()
            finally:
                conn.close()
        except sqlite3.DatabaseError as e:
            return False, f"Arquivo não é um banco de dados SQLite válido: {e}"

        if len(tables) == 5:
            return True, "Banco de dados válido com todas as tabelas do sistema"
        return True, f"Banco SQLite válido ({len(tables)} tabelas reconhecidas). Esquema será criado automaticamente."

    directory = os.path.dirname(path)
    if not os.path.isdir(directory):
        return False, f"Diretório não existe: {directory}"

    if not os.access(directory, os.W_OK):
        return False, f"Sem permissão de escrita no diretório: {directory}"

    if not path.lower().endswith('.db'):
        return False, "O arquivo deve ter extensão .db"

    return True, "Caminho válido (banco será criado)"
