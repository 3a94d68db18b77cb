# src/brickwall/constants.py
from __future__ import annotations

"""Wall economics and well-known ledger addresses.

Amounts are in lamports (1 SOL = 1e9 lamports).
"""

LAMPORTS_PER_SOL: int = 1_000_000_000

# Canvas geometry
CANVAS_WIDTH: int = 1000
CANVAS_HEIGHT: int = 1000
BRICKS_PER_ROW: int = 100
BRICKS_PER_COLUMN: int = 100
BRICK_WIDTH: int = CANVAS_WIDTH // BRICKS_PER_ROW
BRICK_HEIGHT: int = CANVAS_HEIGHT // BRICKS_PER_COLUMN

# Pricing
PRICE_PER_BRICK: int = LAMPORTS_PER_SOL // 4  # 0.25 SOL
PRICE_PER_BRICK_EDIT: int = LAMPORTS_PER_SOL // 10  # 0.1 SOL

# Paid by the service identity in every purchase tx so the service is a
# required signer alongside the Bubblegum leaf owner.
SERVICE_SIGNAL_LAMPORTS: int = 5_000

# Priority fees
COMPUTE_UNIT_LIMIT: int = 100_000
COMPUTE_UNIT_PRICE_MICRO_LAMPORTS: int = 100_000
JITO_TIP_LAMPORTS: int = 30_000

FUNDS_DESTINATION: str = "9hLBcTppq5DUziXTnuUtorbzKSDzM8cFz3FSvUgD8Nsf"

JITO_TIP_ACCOUNTS: tuple[str, ...] = (
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
)

# Program ids
SYSTEM_PROGRAM_ID: str = "11111111111111111111111111111111"
COMPUTE_BUDGET_PROGRAM_ID: str = "ComputeBudget111111111111111111111111111111"
BUBBLEGUM_PROGRAM_ID: str = "BGUMAp9Gq7iTEuizy4pqaxsTyUCBK68MDfK752saRPUY"
SPL_ACCOUNT_COMPRESSION_PROGRAM_ID: str = "cmtDvXumGCrqC1Age74AVPhSRVXJMd8PJS91L8KbNCK"
SPL_NOOP_PROGRAM_ID: str = "noopb9bkMVfRPU8AsbpTUg8AQkHtKwMYZiFUjNRtMmV"

# Indexer paging
ASSET_PAGE_LIMIT: int = 1000

# Purchase batches are built concurrently within a chunk of this many bricks.
PURCHASE_CHUNK_SIZE: int = 100
