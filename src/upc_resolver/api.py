from __future__ import annotations

"""HTTP routes over the resolver.

Run with ``uvicorn upc_resolver.api:app``. Usage numbers travel in the
response body, never in headers.
"""

from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from upc_resolver.models import LookupKey, ResolutionResult
from upc_resolver.resolver import ProductResolver
from upc_resolver.tools import build_usage_report, get_resolver, persist_budgets, reset_budgets


class LookupRequest(BaseModel):
    upc: str = Field(min_length=1, max_length=32)


class SearchRequest(BaseModel):
    model_config = {"populate_by_name": True}

    product_name: str = Field(alias="productName", min_length=1, max_length=300)
    brand: str | None = Field(default=None, max_length=200)


class BudgetResetRequest(BaseModel):
    source: str | None = None
    kind: str | None = None


router = APIRouter(prefix="/api")


def _result_response(result: ResolutionResult, **extra: object) -> JSONResponse:
    body = result.to_dict()
    body.update(extra)
    if result.found:
        return JSONResponse(body)
    body["error"] = "Product not found"
    return JSONResponse(body, status_code=404)


@router.post("/products/lookup")
def lookup_product(body: LookupRequest, resolver: ProductResolver = Depends(get_resolver)):
    """Resolve a scanned UPC/EAN code."""
    try:
        key = LookupKey.for_code(body.upc)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    result = resolver.resolve(key)
    persist_budgets(resolver)
    return _result_response(result)


@router.post("/products/search-upc")
def search_upc(body: SearchRequest, resolver: ProductResolver = Depends(get_resolver)):
    """Find a product's UPC from its name and optional brand."""
    try:
        key = LookupKey.for_name(body.product_name, body.brand)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    result = resolver.resolve(key)
    persist_budgets(resolver)
    upc = None
    if result.product is not None:
        upc = result.product.upc or result.product.ean or result.product.gtin
    return _result_response(result, upc=upc, search_query=key.search_query)


@router.get("/products/usage")
def usage(resolver: ProductResolver = Depends(get_resolver)):
    return build_usage_report(resolver)


@router.post("/admin/budgets/reset")
def admin_reset_budgets(body: BudgetResetRequest, resolver: ProductResolver = Depends(get_resolver)):
    try:
        return reset_budgets(resolver, body.source, body.kind)
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)


def create_app() -> FastAPI:
    application = FastAPI(title="UPC Resolver")
    application.include_router(router)
    return application


app = create_app()
