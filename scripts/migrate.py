import argparse, asyncio, os

import asyncpg

from storefront.settings import settings

SCHEMA_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'storefront', 'db', 'schema.sql'))

async def apply_schema(dsn: str, path: str):
    with open(path, 'r', encoding='utf-8') as f:
        sql = f.read()
    conn = await asyncpg.connect(dsn=dsn)
    try:
        await conn.execute(sql)
    finally:
        await conn.close()
    print(f"Applied {path}")

if __name__ == "__main__":
    ap = argparse.ArgumentParser(description='Create the orders and order_items tables')
    ap.add_argument('--dsn', default=settings.database_url, help='Postgres DSN (defaults to DATABASE_URL)')
    ap.add_argument('--schema', default=SCHEMA_PATH)
    args = ap.parse_args()
    if not args.dsn:
        ap.error('DATABASE_URL is not set; pass --dsn')
    asyncio.run(apply_schema(args.dsn, args.schema))
