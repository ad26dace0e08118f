"""SCIM 2.0 gateway package.

To use the Flask app:
    from scimgate.flask_app import create_app

To use the protocol engine without Flask:
    from scimgate.core.filter import parse_filter
    from scimgate.core.query import QueryProcessor, QueryParams
"""
# Note: flask_app is not imported here so scimgate.core stays usable
# without a web stack.
