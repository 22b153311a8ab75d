"""Fail if the migrated schema drifts from the models or lacks a reconciliation index."""

from __future__ import annotations

import asyncio

from outlink.config import settings
from outlink import models  # noqa: F401  # Ensure models are registered
from outlink.schema_check import check_schema


async def main() -> int:
    problems = await check_schema(settings.database_url)

    if problems:
        print("Detected schema problems in the profile store:")
        for problem in problems:
            print(f"  {problem}")
        return 1

    print("Profile store schema matches the models and has every required index.")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
