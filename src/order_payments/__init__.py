"""Order payments engine.

Verifies mobile-money payments (Chapa, Telebirr) reported by webhook,
moves orders from PENDING to PAID exactly once, and records ambassador
commissions for referred orders.
"""

__version__ = "0.1.0"
