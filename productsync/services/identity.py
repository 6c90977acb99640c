import json
import logging
import uuid
from pathlib import Path
from typing import Union
from productsync.models.base import utc_now

logger = logging.getLogger("NodeIdentity")

class NodeIdentity:
    """
    Identificador estável desta instalação. Criado uma vez e persistido em
    arquivo; é a chave usada no conjunto de confirmações do servidor.
    """
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.node_id = self._load_or_create()

    def _load_or_create(self) -> str:
        try:
            if self.path.exists():
                data = json.loads(self.path.read_text(encoding="utf-8"))
                node_id = data["node_id"]
                logger.info(f"Loaded existing node ID: {node_id}")
                return node_id

            node_id = str(uuid.uuid4())
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"node_id": node_id, "created_at": utc_now().isoformat()}
            self.path.write_text(json.dumps(payload), encoding="utf-8")
            logger.info(f"Generated new node ID: {node_id}")
            return node_id
        except (OSError, ValueError, KeyError) as e:
            # Sem arquivo utilizável: ID só desta execução
            logger.error(f"Error initializing node ID from {self.path}: {e}")
            return f"fallback-{uuid.uuid4()}"
