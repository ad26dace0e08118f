"""SCIM 2.0 HTTP endpoints (RFC 7644), one tree per registered plugin.

    /scim/v2/<plugin>/Users[/<id>]            GET POST PUT PATCH DELETE
    /scim/v2/<plugin>/Groups[/<id>]           GET POST PUT PATCH DELETE
    /scim/v2/<plugin>/.search                 POST (Users and Groups)
    /scim/v2/<plugin>/Users/.search           POST
    /scim/v2/<plugin>/Groups/.search          POST
    /scim/v2/<plugin>/ServiceProviderConfig   GET (public)
    /scim/v2/<plugin>/ResourceTypes[/<name>]  GET (public)
    /scim/v2/<plugin>/Schemas[/<urn>]         GET (public)

Routes only translate HTTP to adapter calls; every protocol rule lives in
scimgate.core and scimgate.plugins.adapter.

Security:
    - Per-plugin HTTP Basic or Bearer authentication (constant-time compare)
    - Discovery endpoints are public
    - Request size and Content-Type enforced before any handler runs
"""
from __future__ import annotations
import logging
from typing import Any, Optional

from flask import Blueprint, Response, current_app, g, jsonify, request

from scimgate.config.settings import AppConfig
from scimgate.core import discovery
from scimgate.core.auth import credential_fingerprint
from scimgate.core.cancellation import CancellationToken
from scimgate.core.errors import InvalidSyntaxError, NotFoundError, ScimError
from scimgate.core.query import ListResponse, QueryParams, QueryProcessor
from scimgate.core.resources import resource_type_for_endpoint
from scimgate.core.versioning import ConditionalHeaders, NotModified
from scimgate.plugins.adapter import PluginAdapter
from scimgate.plugins.manager import PluginManager

bp = Blueprint("scim", __name__, url_prefix="/scim/v2")

SCIM_CONTENT_TYPE = "application/scim+json"
ACCEPTED_CONTENT_TYPES = ("application/scim+json", "application/json")
DISCOVERY_ENDPOINTS = frozenset({
    "scim.service_provider_config",
    "scim.list_resource_types",
    "scim.get_resource_type",
    "scim.list_schemas",
    "scim.get_schema",
})

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def _manager() -> PluginManager:
    return current_app.config["PLUGIN_MANAGER"]


def _adapter(plugin_name: str) -> PluginAdapter:
    cfg = _config()
    return PluginAdapter(
        _manager().require(plugin_name),
        base_url=f"{cfg.base_url}{bp.url_prefix}",
        query_processor=QueryProcessor(max_count=cfg.max_results, default_count=cfg.default_count),
        max_patch_operations=cfg.max_patch_operations,
    )


def scim_response(body: Any, status: int = 200, resource: Optional[dict] = None) -> Response:
    """JSON response with the SCIM media type; ``resource`` adds ETag and Location."""
    response = jsonify(body)
    response.status_code = status
    response.headers["Content-Type"] = SCIM_CONTENT_TYPE
    meta = (resource or {}).get("meta") or {}
    if meta.get("version"):
        response.headers["ETag"] = meta["version"]
    if status == 201 and meta.get("location"):
        response.headers["Location"] = meta["location"]
    return response


def _json_body() -> Any:
    body = request.get_json(silent=True)
    if body is None:
        raise InvalidSyntaxError("Request body must be valid JSON")
    return body


def _conditions() -> ConditionalHeaders:
    return ConditionalHeaders(
        if_match=request.headers.get("If-Match"),
        if_none_match=request.headers.get("If-None-Match"),
    )


def _cancellation() -> CancellationToken:
    return getattr(g, "cancellation", None) or CancellationToken(_config().request_timeout_seconds)


# ─────────────────────────────────────────────────────────────────────────────
# Error Handler
# ─────────────────────────────────────────────────────────────────────────────

@bp.errorhandler(ScimError)
def handle_scim_error(error: ScimError):
    """Render any ScimError as an RFC 7644 error body."""
    if error.status >= 500:
        logger.warning(f"SCIM {error.status} | path={request.path} | detail={error.detail}")
    response = scim_response(error.to_dict(), error.status)
    if error.status == 401:
        authenticator = _manager().get_authenticator(getattr(g, "plugin_name", "") or "")
        scheme = authenticator.scheme if authenticator else "Basic"
        response.headers["WWW-Authenticate"] = f'{scheme} realm="SCIM Gateway"'
    return response


# ─────────────────────────────────────────────────────────────────────────────
# Request Validation Middleware
# ─────────────────────────────────────────────────────────────────────────────

@bp.before_request
def validate_request():
    """Resolve the plugin, authenticate, and check size and content type."""
    plugin_name = (request.view_args or {}).get("plugin")
    if plugin_name is None:
        return None

    cfg = _config()
    manager = _manager()
    manager.require(plugin_name)
    g.plugin_name = plugin_name
    g.cancellation = CancellationToken(cfg.request_timeout_seconds)

    if request.endpoint not in DISCOVERY_ENDPOINTS:
        authenticator = manager.get_authenticator(plugin_name)
        if authenticator is not None:
            authorization = request.headers.get("Authorization")
            authenticator.authenticate(authorization)
            g.auth_method = authenticator.scheme.lower()
            logger.info(
                f"✅ SUCCESS SCIM auth | plugin={plugin_name} | method={g.auth_method} | "
                f"credential_hash={credential_fingerprint(authorization or '')} | path={request.path}"
            )

    if request.content_length and request.content_length > cfg.max_payload_bytes:
        raise ScimError(
            f"Request payload exceeds maximum allowed size ({cfg.max_payload_bytes} bytes)",
            status=413,
            scim_type="invalidValue",
        )

    if request.method in ("POST", "PUT", "PATCH"):
        if request.mimetype not in ACCEPTED_CONTENT_TYPES:
            raise ScimError("Content-Type must be application/scim+json", status=415, scim_type="invalidSyntax")
    return None


@bp.after_request
def add_correlation_id(response):
    """Echo the correlation ID and report the auth method used."""
    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        response.headers["X-Correlation-Id"] = correlation_id
    auth_method = getattr(g, "auth_method", None)
    if auth_method:
        response.headers["X-Auth-Method"] = auth_method
    return response


# ─────────────────────────────────────────────────────────────────────────────
# Discovery Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/<plugin>/ServiceProviderConfig", methods=["GET"])
def service_provider_config(plugin: str):
    cfg = _config()
    plugin_config = cfg.plugin(plugin)
    auth_type = plugin_config.auth.type if plugin_config else "none"
    return scim_response(discovery.service_provider_config(cfg.max_results, auth_type, cfg.documentation_uri))


@bp.route("/<plugin>/ResourceTypes", methods=["GET"])
def list_resource_types(plugin: str):
    documents = discovery.resource_types(f"{_config().base_url}{bp.url_prefix}/{plugin}")
    return scim_response(_list_envelope(documents))


@bp.route("/<plugin>/ResourceTypes/<name>", methods=["GET"])
def get_resource_type(plugin: str, name: str):
    for document in discovery.resource_types(f"{_config().base_url}{bp.url_prefix}/{plugin}"):
        if document["id"].lower() == name.lower():
            return scim_response(document)
    raise NotFoundError(f"Resource type '{name}' not found")


@bp.route("/<plugin>/Schemas", methods=["GET"])
def list_schemas(plugin: str):
    return scim_response(_list_envelope(discovery.schemas()))


@bp.route("/<plugin>/Schemas/<schema_id>", methods=["GET"])
def get_schema(plugin: str, schema_id: str):
    for document in discovery.schemas():
        if document["id"].lower() == schema_id.lower():
            return scim_response(document)
    raise NotFoundError(f"Schema '{schema_id}' not found")


def _list_envelope(documents: list[dict]) -> dict:
    return ListResponse(len(documents), 1, len(documents), documents).to_dict()


# ─────────────────────────────────────────────────────────────────────────────
# Resource Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/<plugin>/<any(Users, Groups):endpoint>", methods=["GET"])
def list_resources(plugin: str, endpoint: str):
    """GET /<plugin>/Users?filter=...&sortBy=...&startIndex=...&count=..."""
    params = QueryParams.from_args(request.args)
    result = _adapter(plugin).list_resources(resource_type_for_endpoint(endpoint), params, _cancellation())
    return scim_response(result.to_dict())


@bp.route("/<plugin>/<any(Users, Groups):endpoint>", methods=["POST"])
def create_resource(plugin: str, endpoint: str):
    created = _adapter(plugin).create_resource(resource_type_for_endpoint(endpoint), _json_body(), _cancellation())
    logger.info(f"Created {endpoint[:-1]} {created.get('id')} via plugin '{plugin}'")
    return scim_response(created, 201, resource=created)


@bp.route("/<plugin>/<any(Users, Groups):endpoint>/<resource_id>", methods=["GET"])
def get_resource(plugin: str, endpoint: str, resource_id: str):
    params = QueryParams.from_args(request.args)
    result = _adapter(plugin).get_resource(
        resource_type_for_endpoint(endpoint),
        resource_id,
        attributes=params.attributes,
        excluded_attributes=params.excluded_attributes,
        conditions=_conditions(),
        cancellation=_cancellation(),
    )
    if isinstance(result, NotModified):
        response = Response(status=304)
        response.headers["ETag"] = result.etag
        return response
    return scim_response(result, resource=result)


@bp.route("/<plugin>/<any(Users, Groups):endpoint>/<resource_id>", methods=["PUT"])
def replace_resource(plugin: str, endpoint: str, resource_id: str):
    replaced = _adapter(plugin).replace_resource(
        resource_type_for_endpoint(endpoint), resource_id, _json_body(), _conditions(), _cancellation()
    )
    return scim_response(replaced, resource=replaced)


@bp.route("/<plugin>/<any(Users, Groups):endpoint>/<resource_id>", methods=["PATCH"])
def patch_resource(plugin: str, endpoint: str, resource_id: str):
    patched = _adapter(plugin).patch_resource(
        resource_type_for_endpoint(endpoint), resource_id, _json_body(), _conditions(), _cancellation()
    )
    return scim_response(patched, resource=patched)


@bp.route("/<plugin>/<any(Users, Groups):endpoint>/<resource_id>", methods=["DELETE"])
def delete_resource(plugin: str, endpoint: str, resource_id: str):
    _adapter(plugin).delete_resource(resource_type_for_endpoint(endpoint), resource_id, _conditions(), _cancellation())
    logger.info(f"Deleted {endpoint[:-1]} {resource_id} via plugin '{plugin}'")
    return Response(status=204)


# ─────────────────────────────────────────────────────────────────────────────
# Search Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/<plugin>/.search", methods=["POST"])
def search_all(plugin: str):
    params = QueryParams.from_search_request(_json_body())
    result = _adapter(plugin).search(params, cancellation=_cancellation())
    return scim_response(result.to_dict())


@bp.route("/<plugin>/<any(Users, Groups):endpoint>/.search", methods=["POST"])
def search_resources(plugin: str, endpoint: str):
    params = QueryParams.from_search_request(_json_body())
    result = _adapter(plugin).search(params, [resource_type_for_endpoint(endpoint)], _cancellation())
    return scim_response(result.to_dict())
