"""Shared plumbing for aiohttp services: logging, tracing, pool, workers."""
