#!/usr/bin/env python3
# entrypoint_booking_api.py
"""
Точка входа для Booking API.
Порт: settings.api.API_PORT (по умолчанию 8095)
"""

import asyncio
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from carhire.config import settings
from carhire.common.logger import log_info, setup_logging
from carhire.common.constants import TypeMsg


async def main() -> None:
    """Запуск Booking API."""
    setup_logging()
    await log_info(
        f"Запуск Booking API на {settings.api.API_HOST}:{settings.api.API_PORT}",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "carhire.services.booking_api.app:app",
        host=settings.api.API_HOST,
        port=settings.api.API_PORT,
        reload=False,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    await server.serve()


if __name__ == "__main__":
    asyncio.run(main())
