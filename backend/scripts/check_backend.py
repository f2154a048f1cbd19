#!/usr/bin/env python3
"""
Quick checks so the backend can start. Run from backend/:
  python scripts/check_backend.py
"""
import os
import sys
from pathlib import Path

# Run from backend/
backend_dir = Path(__file__).resolve().parent.parent
os.chdir(backend_dir)
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def main():
    errors = []

    # 1) .env
    env_file = backend_dir / ".env"
    if not env_file.exists():
        errors.append("backend/.env missing. Set DATABASE_URL, SUPABASE_URL, SUPABASE_ANON_KEY, ANTHROPIC_API_KEY.")
    else:
        print("OK  .env exists")

    # 2) DB connection and tables
    try:
        from sqlalchemy import inspect, text

        from macro_journal.db.session import engine
        from macro_journal.db.tables import ALL_TABLE_NAMES

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("OK  Database connection (DATABASE_URL)")
        missing = sorted(set(ALL_TABLE_NAMES) - set(inspect(engine).get_table_names()))
        if missing:
            errors.append(f"Tables missing: {', '.join(missing)}. Run: alembic upgrade head")
            print("FAIL Tables missing:", ", ".join(missing))
        else:
            print("OK  Tables present")
    except Exception as e:
        errors.append(f"Database: {e}")
        print("FAIL Database:", e)

    # 3) Config the insight engine needs
    from macro_journal.config import settings

    if not settings.supabase_url or not settings.supabase_anon_key:
        errors.append("SUPABASE_URL / SUPABASE_ANON_KEY not set; bearer tokens cannot be verified.")
        print("FAIL Supabase auth config")
    else:
        print("OK  Supabase auth config")
    if not settings.anthropic_api_key:
        print("WARN ANTHROPIC_API_KEY not set; quotes and snack suggestions will use fallbacks")

    # 4) App import (catches missing deps, bad imports)
    try:
        from macro_journal.main import app  # noqa: F401

        print("OK  App import (macro_journal.main)")
    except Exception as e:
        errors.append(f"App import: {e}")
        print("FAIL App import:", e)

    # 5) Port 8000
    try:
        import socket

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 8000))
        print("OK  Port 8000 is free")
    except OSError:
        errors.append("Port 8000 is in use. Stop the other process or use another port (e.g. --port 8001).")
        print("FAIL Port 8000 is in use")

    if errors:
        print("\n---")
        for e in errors:
            print("•", e)
        return 1

    print("\nAll checks passed. Start with: uvicorn macro_journal.main:app --reload --port 8000")
    return 0


if __name__ == "__main__":
    sys.exit(main())
