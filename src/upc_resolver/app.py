from __future__ import annotations

from upc_resolver.agents import build_listing_agent
from upc_resolver.config import RuntimeConfig
from upc_resolver.tracing import configure_tracing

# ADK convention: expose root_agent for adk web / runner entrypoints.
configure_tracing()
root_agent = build_listing_agent(RuntimeConfig.from_env())
