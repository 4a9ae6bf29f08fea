import sys

import db

EXPECTED_TABLES = set(db.ALL_TABLES)

try:
    with db.get_cursor() as cursor:
        if db.USE_POSTGRES:
            cursor.execute("SELECT table_name AS name FROM information_schema.tables WHERE table_schema = 'public'")
        else:
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = sorted(row['name'] for row in cursor.fetchall())
        print("Tables found:", tables)

        missing = EXPECTED_TABLES - set(tables)
        if missing:
            print("CRITICAL: tables MISSING:", sorted(missing))
            sys.exit(1)

        cursor.execute("SELECT COUNT(*) AS n FROM user_access")
        print(f"Users found: {cursor.fetchone()['n']}")

        cursor.execute("SELECT username, email, access_level FROM user_access ORDER BY username")
        for user in cursor.fetchall():
            print(f"User: {user['username']} <{user['email']}> [{user['access_level']}]")
except Exception as e:
    print(f"Error: {e}")
    sys.exit(1)
