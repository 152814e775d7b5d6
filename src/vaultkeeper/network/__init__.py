"""Framed TCP transport, interceptors and chunked transfer."""
