"""
pytest configuration shared by all test directories

Settings are cached on first import, so the test environment is set here,
before any crm_bridge module is loaded.
"""
import os

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("EVOLUTION_API_URL", "http://evolution.test")
os.environ.setdefault("EVOLUTION_API_KEY", "test-evolution-key")
os.environ.setdefault("EVOLUTION_DEFAULT_INSTANCE", "atendimento")
os.environ.setdefault("WEBHOOK_PUBLIC_URL", "https://crm.test/webhook/evolution")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("DEFAULT_DEPARTMENT_ID", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")
