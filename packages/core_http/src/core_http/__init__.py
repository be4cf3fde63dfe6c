from .client import fetch_json, get_http_client, aclose_http_client

__all__ = ["fetch_json", "get_http_client", "aclose_http_client"]
