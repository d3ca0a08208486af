# carhire/__init__.py
"""
Движок заявок на аренду автомобилей и предложений водителей.
"""

__version__ = "1.0.0"
