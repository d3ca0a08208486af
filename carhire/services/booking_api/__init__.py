# carhire/services/booking_api/__init__.py
"""
Booking API — HTTP и WebSocket доступ к заявкам и предложениям.
"""
