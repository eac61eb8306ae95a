"""
WhatsApp CRM Bridge - Evolution API webhook receiver and ticket routing
"""
__version__ = "1.0.0"
