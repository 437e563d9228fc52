#!/usr/bin/env python3
"""Create tables and the indexes the fraud statistics queries rely on"""

import asyncio
from sqlalchemy import text
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from db.models import db

INDEXES = {
    # user stats (created_by_user_id + created_at window)
    'idx_orders_user_time': """
        CREATE INDEX IF NOT EXISTS idx_orders_user_time
        ON orders(created_by_user_id, created_at DESC)
        WHERE deleted_at IS NULL
    """,
    # ip stats match on data->>'reqIp'
    'idx_orders_req_ip': """
        CREATE INDEX IF NOT EXISTS idx_orders_req_ip
        ON orders((data->>'reqIp'))
        WHERE deleted_at IS NULL
    """,
    # email stats use LOWER(email) LIKE LOWER(:email)
    'idx_users_lower_email': """
        CREATE INDEX IF NOT EXISTS idx_users_lower_email
        ON users(LOWER(email))
    """,
    # card stats match on name + expiry + country
    'idx_payment_methods_card': """
        CREATE INDEX IF NOT EXISTS idx_payment_methods_card
        ON payment_methods(type, name, (data->>'expYear'), (data->>'expMonth'), (data->>'country'))
    """,
}


async def add_indexes():
    print("Creating tables and indexes for fraud statistics...")

    await db.create_tables()

    async with db.engine.begin() as conn:
        for name, statement in INDEXES.items():
            await conn.execute(text(statement))
            print(f"Added {name}")

    await db.close()
    print("\nAll indexes added.")

if __name__ == '__main__':
    asyncio.run(add_indexes())
