# D:\Settlement\settlement\client\dashboard_cache.py
"""
dashboard_cache.py

Cache local do último painel financeiro carregado, para exibição sem conexão.

O cache é apenas uma cópia de exibição: o estado autoritativo é sempre o do servidor
e o snapshot é substituído a cada nova leitura bem-sucedida.
"""

import json
import logging
import os
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class DashboardCache:
    """Snapshot JSON do painel em um arquivo local."""

    def __init__(self, path: str = "dashboard_cache.json"):
        self.path = path

    def save(self, data: Dict[str, Any]) -> bool:
        """
        Grava o snapshot com o carimbo lastUpdated (epoch em milissegundos).

        Returns:
            bool: True se gravado; falhas são registradas e não interrompem o chamador.
        """
        snapshot = {**data, "lastUpdated": int(time.time() * 1000)}
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as cache_file:
                json.dump(snapshot, cache_file, ensure_ascii=False)
            os.replace(tmp_path, self.path)
            return True
        except (OSError, TypeError, ValueError):
            logger.exception("Falha ao gravar o cache do painel em %s", self.path)
            return False

    def load(self) -> Optional[Dict[str, Any]]:
        """Retorna o último snapshot, ou None se ausente ou corrompido."""
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, encoding="utf-8") as cache_file:
                return json.load(cache_file)
        except (OSError, ValueError):
            logger.exception("Falha ao ler o cache do painel em %s", self.path)
            return None

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
