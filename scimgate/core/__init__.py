"""SCIM protocol engine.

Pure Python, no Flask dependencies. Everything a backend plugin or the HTTP
layer needs to speak SCIM 2.0 lives here.

Module Structure:
    - filter.py      : Filter grammar parser (RFC 7644 §3.4.2.2)
    - evaluator.py   : Filter evaluation against a resource
    - attributes.py  : Attribute paths, case-insensitive lookup, URN handling
    - patch.py       : PATCH operations (RFC 7644 §3.5.2), applied atomically
    - projection.py  : attributes / excludedAttributes selection
    - query.py       : Filter, sort, paginate, project pipeline
    - versioning.py  : Version tokens, ETags, conditional requests
    - cancellation.py: Per-request deadline token
    - errors.py      : ScimError hierarchy (status + scimType)
    - auth.py        : Basic / Bearer authenticators
    - validators.py  : Inbound payload validation
    - resources.py   : Resource type table and outbound transforms
    - discovery.py   : ServiceProviderConfig, ResourceTypes, Schemas

Usage Pattern:
    Import explicitly when needed:
        from scimgate.core.filter import parse_filter
        from scimgate.core.evaluator import evaluate
        from scimgate.core.patch import PatchProcessor, PatchRequest
"""
