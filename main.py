"""
Knowledge broker entry point.

Gathers documentation, examples, best practices and troubleshooting guides
for each topic given on the command line (default: react).
"""

import asyncio
import sys

from loguru import logger

from knowledge_broker.channels import HttpChannel, RpcChannel
from knowledge_broker.services import KnowledgeBroker
from knowledge_broker.services.scheduler import CacheFlushScheduler
from knowledge_broker.settings import load_settings


async def main(topics: list[str]) -> None:
    logger.info("Starting knowledge broker...")

    settings = load_settings()
    config = settings.to_broker_config()
    broker = KnowledgeBroker(
        config,
        HttpChannel(settings.base_url, settings.api_key, timeout=settings.request_timeout),
        RpcChannel(settings.rpc_url, settings.api_key, timeout=settings.request_timeout),
    )
    scheduler = CacheFlushScheduler(broker)

    try:
        await broker.start()
        scheduler.start()

        if not await broker.health_check():
            logger.warning("Primary channel is not answering, results may be degraded")

        for topic in topics:
            bundle = await broker.get_knowledge(topic)
            logger.info(bundle.summary)
            for doc in bundle.documentation[:3]:
                logger.info(f"  - {doc.title} ({doc.source})")

        logger.info(f"Health: {broker.get_health_status()}")

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        scheduler.stop()
        await broker.close()
        logger.info("Knowledge broker stopped")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:] or ["react"]))
