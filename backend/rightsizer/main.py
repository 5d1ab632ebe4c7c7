"""
Rightsizer catalog refresh service.

Keeps the pricing catalog views current in the background. Recommendation
callers share the same database through build_recommendation_service().
"""
import signal
import threading
from typing import List, Optional

import httpx
import structlog

from rightsizer.catalog.definitions import build_definitions
from rightsizer.catalog.pipeline import CatalogRefreshPipeline
from rightsizer.catalog.scheduler import CatalogRefreshScheduler
from rightsizer.catalog.sources import HttpCsvRowSource
from rightsizer.config import Settings, get_settings
from rightsizer.core.logging import configure_logging
from rightsizer.db.database import (
    build_async_engine,
    build_async_session_factory,
    build_sync_engine,
    init_db,
)
from rightsizer.engine.description import DescriptionGenerator
from rightsizer.engine.service import RecommendationService
from rightsizer.pricing import TieredPricingCalculator, default_family_models

logger = structlog.get_logger()


def build_pipelines(settings: Settings, engine, client: httpx.Client) -> List[CatalogRefreshPipeline]:
    """One pipeline per catalog. Volume prices ship in the compute price list."""
    sources = {
        "ec2_instance_types": settings.source_url(settings.ec2_pricing_source),
        "ebs_volume_types": settings.source_url(settings.ec2_pricing_source),
        "rds_db_storage": settings.source_url(settings.rds_pricing_source),
    }
    return [
        CatalogRefreshPipeline(
            definition,
            HttpCsvRowSource(sources[definition.name], client, skip_lines=settings.csv_header_skip_lines),
            engine,
            batch_size=settings.catalog_insert_batch_size,
        )
        for definition in build_definitions(settings)
    ]


def build_recommendation_service(
    settings: Optional[Settings] = None,
    description_generator: Optional[DescriptionGenerator] = None,
) -> RecommendationService:
    settings = settings or get_settings()
    engine = build_async_engine(settings.database_url, echo=settings.debug)
    return RecommendationService(
        build_async_session_factory(engine),
        TieredPricingCalculator(default_family_models(), settings.hours_per_month),
        settings,
        description_generator=description_generator,
    )


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    logger.info("application_starting", environment=settings.app_env)

    engine = build_sync_engine(settings.database_url_sync, echo=settings.debug)
    init_db(engine)
    logger.info("database_initialized")

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    with httpx.Client(
        timeout=settings.http_timeout_seconds,
        transport=httpx.HTTPTransport(retries=3),
    ) as client:
        scheduler = CatalogRefreshScheduler(build_pipelines(settings, engine, client), settings)
        scheduler.start()
        try:
            stop.wait()
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.stop()
            engine.dispose()
            logger.info("application_shutdown")


if __name__ == "__main__":
    main()
