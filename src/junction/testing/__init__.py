"""Test utilities for junction applications.

    from junction.testing import TestClient
"""

from junction.testing.client import ClientResponse, TestClient

__all__ = ["ClientResponse", "TestClient"]
