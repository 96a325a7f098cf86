import os
from typing import Optional
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

# .env 파일에서 환경변수 로드
load_dotenv()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./app.db"


class DatabaseConfig(BaseModel):
    url: Optional[str] = None
    host: Optional[str] = None
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "deployment_controller"
    max_conns: int = 100
    pool_timeout: float = 30.0

    def get_database_url(self) -> str:
        # url이 직접 지정되지 않았고 host 정보도 없으면 로컬 sqlite 사용
        if self.url:
            return self.url
        if not self.host:
            return DEFAULT_DATABASE_URL
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"


class TimeoutConfig(BaseModel):
    push: float = 30.0
    request: float = 10.0
    health: float = 5.0


class StoreConfig(BaseModel):
    max_create_attempts: int = 5
    retry_delay: float = 0.01
    backoff_factor: float = 2.0


class Settings(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    server: ServerConfig = ServerConfig()
    timeouts: TimeoutConfig = TimeoutConfig()
    store: StoreConfig = StoreConfig()


def _resolve_config_path(config_path: Optional[str]) -> Optional[str]:
    if config_path:
        return config_path
    if os.getenv("CONFIG_PATH"):
        return os.getenv("CONFIG_PATH")
    for candidate in ("config.yaml", "config.yaml.example"):
        if os.path.exists(candidate):
            return candidate
    return None


def _apply_env_overrides(raw: dict) -> dict:
    database = raw.setdefault("database", {}) or {}
    server = raw.setdefault("server", {}) or {}
    raw["database"], raw["server"] = database, server
    if os.getenv("DATABASE_URL"):
        database["url"] = os.getenv("DATABASE_URL")
    if os.getenv("DB_MAX_CONNS"):
        database["max_conns"] = int(os.getenv("DB_MAX_CONNS"))
    if os.getenv("LOG_LEVEL"):
        server["log_level"] = os.getenv("LOG_LEVEL")
    if os.getenv("SERVER_PORT"):
        server["port"] = int(os.getenv("SERVER_PORT"))
    return raw


def load_settings(config_path: Optional[str] = None) -> Settings:
    path = _resolve_config_path(config_path)
    raw = {}
    if path:
        if not os.path.exists(path):
            raise FileNotFoundError(f"config file not found: {os.path.abspath(path)}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"config file must contain a mapping: {path}")
    return Settings.model_validate(_apply_env_overrides(raw))


# 싱글턴 설정
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def set_settings(settings: Settings) -> None:
    global _settings
    _settings = settings
