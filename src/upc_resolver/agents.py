from __future__ import annotations

"""ADK agent graph: resolve a product, then draft marketplace listing copy."""

from google.adk.agents import LlmAgent, SequentialAgent
from google.adk.tools import FunctionTool

from upc_resolver.config import RuntimeConfig
from upc_resolver.tools import get_lookup_usage, lookup_product_by_upc, search_product_by_name
from upc_resolver.tracing import traceable


@traceable(name="build_listing_agent", run_type="chain")
def build_listing_agent(config: RuntimeConfig) -> SequentialAgent:
    """Build the two-step listing pipeline.

    1) Product lookup agent resolves the user's UPC or product name.
    2) Listing copy agent turns the resolved record into marketplace copy.
    """

    product_lookup_agent = LlmAgent(
        name="product_lookup_agent",
        model=config.model_name,
        instruction=(
            "Identify the product the user is asking about. "
            "If they give a barcode (UPC, EAN or GTIN), call lookup_product_by_upc. "
            "If they give a product name, call search_product_by_name with the name and brand. "
            "Call get_lookup_usage when the user asks about remaining lookup capacity. "
            "Report the resolved product record as-is; if nothing was found, say so and include "
            "the status so the user can tell a miss from a temporary outage."
        ),
        tools=[
            FunctionTool(lookup_product_by_upc),
            FunctionTool(search_product_by_name),
            FunctionTool(get_lookup_usage),
        ],
        output_key="product_record",
    )

    listing_copy_agent = LlmAgent(
        name="listing_copy_agent",
        model=config.model_name,
        instruction=(
            "Using only facts from {product_record}, write listing copy: an eBay title of at most "
            "80 characters, a longer SEO title, a short description under 150 characters, "
            "key feature bullets, item specifics (brand, model, color, size where known) and search tags. "
            "Do not invent specifications. If no product was found, ask the user for more details instead."
        ),
        output_key="listing_copy",
    )

    return SequentialAgent(
        name="upc_listing_orchestrator",
        description="Resolves products by UPC or name and drafts marketplace listing copy.",
        sub_agents=[product_lookup_agent, listing_copy_agent],
    )
