"""Declarative scraping pipeline.

Fetches parameterised URLs, optionally after an authentication chain,
extracts values from each response and routes them to storage, to further
extraction, or to new fetches that run on the same bounded scheduler.

Key modules:
    params          -- ParameterSpace over IntRange / KeyWords specs
    request_plan    -- RequestPlan expanding a base URL into requests
    auth            -- AuthStep chain producing an authenticated session
    extraction      -- StructuredMarkup, Pattern, PathLookup strategies
    steps           -- Process, Scrape, Store continuation steps
    dispatcher      -- PipelineDispatcher routing responses and results
    job             -- Job and ScrapingUnit
    scheduler       -- Scheduler: bounded queue + worker pool
    transport       -- session building, send, materialize
    storage         -- StorageBase, LocalDirectorySink, JsonlSink
    metrics         -- MetricsCollector for per-request outcomes
    config          -- pydantic-validated configuration loader
    models          -- result units, responses, request descriptors
    errors          -- exception hierarchy
"""

__version__ = "0.1.0"
