# logger.py
# Logger e auditoria

import logging
import os
import sys
from datetime import datetime
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

logger = logging.getLogger('gestao_erp')


def get_log_dir(configured: Optional[str] = None) -> str:
    """Retorna o diretório de logs (configurado ou ~/.gestao_erp/logs)"""
    log_dir = configured or os.path.join(os.path.expanduser('~'), '.gestao_erp', 'logs')
    os.makedirs(log_dir, exist_ok=True)
    return log_dir


def setup_logging(log_dir: Optional[str] = None, level: str = 'INFO', to_file: bool = True) -> str:
    """
    Configura o logger da aplicação com arquivo diário + console.

    Returns:
        str: Caminho do arquivo de log (vazio quando to_file=False)
    """
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_path = ''
    if to_file:
        log_path = os.path.join(get_log_dir(log_dir), f'erp_{datetime.now().strftime("%Y%m%d")}.log')
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, '%Y-%m-%d %H:%M:%S'))
        logger.addHandler(file_handler)

    # Saída no console para debug
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, '%H:%M:%S'))
    logger.addHandler(console_handler)
    return log_path


def log_event(msg: str):
    """Registra evento informativo"""
    logger.info(msg)


def log_error(msg: str, exc: Exception = None):
    """Registra erro com traceback opcional"""
    if exc:
        logger.error(f"{msg}: {str(exc)}", exc_info=exc)
    else:
        logger.error(msg)


def log_warning(msg: str):
    """Registra aviso"""
    logger.warning(msg)


def log_debug(msg: str):
    """Registra mensagem de debug"""
    logger.debug(msg)


def log_startup(db_path: str, log_path: str = ''):
    """Registra informações de inicialização do sistema"""
    logger.info("=" * 60)
    logger.info("GESTÃO ERP - SERVIDOR INICIADO")
    logger.info("=" * 60)
    logger.info(f"Versão Python: {sys.version}")
    logger.info(f"Sistema Operacional: {sys.platform}")
    logger.info(f"Banco de dados: {db_path}")
    if log_path:
        logger.info(f"Arquivo de log: {log_path}")
    logger.info("=" * 60)
