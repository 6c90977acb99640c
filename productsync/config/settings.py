import os
import logging
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from sqlalchemy.engine import URL

class RemoteCredentials(BaseModel):
    """Credenciais do PostgreSQL compartilhado (ex: AWS RDS)."""
    host: str
    port: int = 5432
    username: str
    password: str
    database: str
    ssl: bool = False

    def to_url(self) -> URL:
        return URL.create(
            "postgresql+asyncpg",
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

class Settings(BaseModel):
    """Configuração do processo. Valores vêm do ambiente / arquivo .env."""
    data_dir: Path = Path(".")
    local_db_path: Optional[Path] = None

    # URL completa tem precedência sobre as credenciais avulsas
    remote_database_url: Optional[str] = None
    remote_credentials: Optional[RemoteCredentials] = None

    batch_size: int = Field(default=1000, gt=0)
    tombstone_batch_size: int = Field(default=100, gt=0)
    ack_batch_size: int = Field(default=500, gt=0)
    local_delete_chunk_size: int = Field(default=200, gt=0)
    safety_window_seconds: float = Field(default=60.0, ge=0)

    auto_sync_interval: float = Field(default=60.0, gt=0)
    health_check_interval: float = Field(default=10.0, gt=0)
    reconnect_max_attempts: int = Field(default=5, ge=1)
    reconnect_base_delay: float = Field(default=5.0, ge=0)

    probe_url: str = "https://clients3.google.com/generate_204"
    probe_timeout: float = Field(default=5.0, gt=0)

    sql_echo: bool = False
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @property
    def local_database_file(self) -> Path:
        return self.local_db_path or self.data_dir / "product-database.db"

    @property
    def node_identity_file(self) -> Path:
        return self.data_dir / "node-identity.json"

    def remote_url(self):
        if self.remote_database_url:
            return self.remote_database_url
        if self.remote_credentials:
            return self.remote_credentials.to_url()
        raise ValueError("A variável de ambiente DATABASE_URL não está definida!")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        # Carrega as variáveis do arquivo .env
        load_dotenv(env_file)

        credentials = None
        if os.getenv("REMOTE_DB_HOST"):
            credentials = RemoteCredentials(
                host=os.environ["REMOTE_DB_HOST"],
                port=int(os.getenv("REMOTE_DB_PORT", "5432")),
                username=os.getenv("REMOTE_DB_USER", "postgres"),
                password=os.getenv("REMOTE_DB_PASSWORD", ""),
                database=os.getenv("REMOTE_DB_NAME", "postgres"),
                ssl=_env_bool("REMOTE_DB_SSL", False),
            )

        values = {
            "remote_database_url": os.getenv("DATABASE_URL"),
            "remote_credentials": credentials,
            "local_db_path": os.getenv("LOCAL_DB_PATH"),
            "data_dir": os.getenv("DATA_DIR"),
            "batch_size": os.getenv("SYNC_BATCH_SIZE"),
            "tombstone_batch_size": os.getenv("SYNC_TOMBSTONE_BATCH_SIZE"),
            "ack_batch_size": os.getenv("SYNC_ACK_BATCH_SIZE"),
            "safety_window_seconds": os.getenv("SYNC_SAFETY_WINDOW_SECONDS"),
            "auto_sync_interval": os.getenv("AUTO_SYNC_INTERVAL_SECONDS"),
            "health_check_interval": os.getenv("HEALTH_CHECK_INTERVAL_SECONDS"),
            "reconnect_max_attempts": os.getenv("RECONNECT_MAX_ATTEMPTS"),
            "reconnect_base_delay": os.getenv("RECONNECT_BASE_DELAY_SECONDS"),
            "probe_url": os.getenv("PROBE_URL"),
            "probe_timeout": os.getenv("PROBE_TIMEOUT_SECONDS"),
            "log_level": os.getenv("LOG_LEVEL"),
            "api_host": os.getenv("API_HOST"),
            "api_port": os.getenv("API_PORT"),
        }
        if os.getenv("SQL_ECHO") is not None:
            values["sql_echo"] = _env_bool("SQL_ECHO", False)

        # Só repassa o que foi definido; o resto fica com o default do modelo
        return cls(**{k: v for k, v in values.items() if v is not None})

def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")

def configure_logging(settings: Settings):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
