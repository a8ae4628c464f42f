"""Purge single-use markers for expired magic link tokens.

Standalone maintenance script. Markers only matter while their token can
still verify; once a token is past expiry the codec rejects it anyway, so
its marker can go.

Usage:
    python -m scripts.purge_redeemed_tokens
"""

import logging

logger = logging.getLogger(__name__)


async def main() -> None:
    """CLI entry point: purge expired markers in the configured database."""
    import sys

    from magiclink.core.database import build_engine, build_marker_session_factory
    from magiclink.services.redemption_store import SqlRedemptionStore

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = build_engine()
    removed = await SqlRedemptionStore(
        build_marker_session_factory(engine)
    ).purge_expired()

    await engine.dispose()

    logger.info("Removed %d expired redemption markers", removed)
    sys.exit(0)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
