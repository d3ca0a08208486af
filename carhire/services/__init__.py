# carhire/services/__init__.py
"""
Сервисы приложения.

- booking_api: HTTP/WebSocket адаптер над сервисом заявок
"""

__all__: list[str] = []
