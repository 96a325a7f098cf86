import asyncio
import argparse
import logging
import sys
import uvicorn
from core import db as core_db
from core.config import load_settings, set_settings
from deployment_store import DeploymentStore
from utils.exceptions import StoreError
from api.rest import create_app


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stdout,
    )


async def main():
    parser = argparse.ArgumentParser(description="Deployment Controller")
    parser.add_argument("--config", default=None, help="Path to YAML configuration file")
    parser.add_argument("--host", default=None, help="REST API host")
    parser.add_argument("--port", type=int, default=None, help="REST API port")
    parser.add_argument("--log-level", default=None, help="Log level (debug, info, warning, error)")
    parser.add_argument("--init-db", action="store_true", help="Create tables before serving (no alembic)")
    args = parser.parse_args()

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        logging.basicConfig(level=logging.ERROR)
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)
    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port
    if args.log_level:
        settings.server.log_level = args.log_level
    set_settings(settings)
    setup_logging(settings.server.log_level)
    logger = logging.getLogger("main")

    # 기동 시 DB 연결 확인, 실패하면 종료
    engine = core_db.init_engine(settings.database)
    if args.init_db:
        await core_db.create_all(engine)
    store = DeploymentStore.from_settings(core_db.get_sessionmaker(), settings)
    try:
        await store.ping(timeout=settings.timeouts.health)
    except StoreError as e:
        logger.error(f"Failed to initialize database: {e.message}")
        await core_db.dispose_engine()
        sys.exit(1)
    logger.info(f"Database connection established (max_conns={settings.database.max_conns})")

    rest_app = create_app(settings)
    config = uvicorn.Config(
        rest_app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level.lower(),
    )
    server = uvicorn.Server(config)
    logger.info(f"Deployment Controller starting on port {settings.server.port}")
    try:
        await server.serve()
    finally:
        await core_db.dispose_engine()
        logger.info("Server exited")


if __name__ == "__main__":
    asyncio.run(main())
