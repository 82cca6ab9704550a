"""groupwarden - group administration engine for WhatsApp bridge sessions."""

__version__ = "0.1.0"
__logo__ = "🛡️"
