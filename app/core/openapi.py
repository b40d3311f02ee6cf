"""OpenAPI metadata and customization utilities.

Enriches the generated schema with tags metadata and an optional API Key
security scheme (``X-API-Key``). Only record management operations are
marked as requiring it; tracking, image and health endpoints are public.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_TAGS = [
    {"name": "Records", "description": "Create and manage tracked QR codes."},
    {"name": "Tracking", "description": "Scan redirects that count each visit."},
    {"name": "Images", "description": "Access to rendered QR images."},
    {"name": "Health", "description": "Liveness checks."},
]

_PUBLIC_TAGS = frozenset({"Tracking", "Images", "Health"})


def apply_openapi_customizations(app: FastAPI, *, api_key_required: bool = False) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and security.

    When ``api_key_required`` is set, injects the ``ApiKeyAuth`` scheme and
    requires it on every operation except public ones (``security: []``).
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in _TAGS:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        if api_key_required:
            components = schema.setdefault("components", {})
            components.setdefault("securitySchemes", {}).setdefault(
                "ApiKeyAuth",
                {
                    "type": "apiKey",
                    "in": "header",
                    "name": "X-API-Key",
                    "description": "Provide your API key via the X-API-Key header.",
                },
            )
            schema.setdefault("security", [{"ApiKeyAuth": []}])

            for methods in schema.get("paths", {}).values():
                for method_obj in methods.values():
                    if isinstance(method_obj, dict) and _PUBLIC_TAGS.intersection(
                        method_obj.get("tags", [])
                    ):
                        method_obj["security"] = []

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
