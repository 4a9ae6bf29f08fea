#!/usr/bin/env python3
"""
PostgreSQL database initialization for deployment.
Creates every MIS table and index and seeds the bootstrap Admin account.
Run this once before starting the Flask application against a new database.
"""

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))


def check_database_url():
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise Exception("DATABASE_URL environment variable not set!")
    if not database_url.startswith("postgres"):
        raise Exception(f"Expected PostgreSQL URL, got: {database_url[:20]}...")


def init_database():
    check_database_url()
    import db

    conn = None
    try:
        conn = db.get_db_connection()
        cursor = conn.cursor()

        for statement in db.SCHEMA:
            cursor.execute(statement.format(pk='SERIAL PRIMARY KEY'))
            table = statement.split('EXISTS', 1)[1].split('(', 1)[0].strip()
            print(f"✅ Created {table} table")

        for statement in db.INDEXES:
            cursor.execute(statement)
        print("✅ Created indexes")

        if db.seed_admin(cursor):
            print(f"✅ Seeded admin account {db.ADMIN_EMAIL}")

        conn.commit()
        print("\n✅ Database initialization completed successfully!")

    except Exception as e:
        print(f"❌ Error initializing database: {e}")
        if conn:
            conn.rollback()
        sys.exit(1)
    finally:
        if conn:
            conn.close()


if __name__ == "__main__":
    init_database()
