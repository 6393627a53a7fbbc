#!/usr/bin/env python3
"""Seed development data for testing.

Indexes a few reference passages into the vector collection so retrieval
has something to return, and prints a signed token for the dev user.

Run with: uv run python scripts/seed_dev_data.py
"""

import asyncio
from datetime import UTC, datetime, timedelta

from jose import jwt

from edusense.auth.middleware import DEV_USER_ID
from edusense.core.config import get_settings
from edusense.rag.processor import get_indexer
from edusense.rag.vector_store import get_vector_store

REFERENCE_PASSAGES = [
    {
        "id": "seed-physics-newton",
        "subject": "physics",
        "topic": "Newton's laws",
        "text": (
            "Newton's second law states that the net force on a body equals its mass "
            "times its acceleration, F = ma. Force is measured in newtons; one newton "
            "accelerates one kilogram at one metre per second squared."
        ),
    },
    {
        "id": "seed-math-derivative",
        "subject": "mathematics",
        "topic": "Derivatives",
        "text": (
            "The derivative of a function measures its instantaneous rate of change. "
            "For f(x) = x^n the power rule gives f'(x) = n x^(n-1). The derivative of "
            "sin x is cos x and the derivative of e^x is e^x."
        ),
    },
    {
        "id": "seed-biology-photosynthesis",
        "subject": "biology",
        "topic": "Photosynthesis",
        "text": (
            "Photosynthesis converts light energy into chemical energy. In the "
            "chloroplast, carbon dioxide and water form glucose and oxygen: "
            "6CO2 + 6H2O -> C6H12O6 + 6O2."
        ),
    },
]


async def seed_dev_data():
    """Index the reference passages and print a dev token."""
    settings = get_settings()

    created = await get_vector_store().ensure_collection()
    print("✓ Created vector collection" if created else "✓ Vector collection already exists")

    indexer = await get_indexer()
    for passage in REFERENCE_PASSAGES:
        result = await indexer.index_text(
            passage["text"],
            source_id=passage["id"],
            metadata={
                "subject": passage["subject"],
                "topic": passage["topic"],
                "source": "Seed reference notes",
            },
        )
        if result.success:
            print(f"✓ Indexed {passage['id']} ({result.chunk_count} chunks)")
        else:
            print(f"✗ Failed to index {passage['id']}: {result.error}")

    token = jwt.encode(
        {
            "userId": DEV_USER_ID,
            "email": "dev@example.com",
            "name": "Developer",
            "exp": datetime.now(UTC) + timedelta(days=7),
        },
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    print("\n✓ Dev data seeded successfully!")
    print(f"  - User ID: {DEV_USER_ID}")
    print(f"  - Token:   {token}")


if __name__ == "__main__":
    asyncio.run(seed_dev_data())
