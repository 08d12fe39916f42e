"""HTTP surface for submitting, cancelling and inspecting jobs."""

from jobline.api.app import create_app

__all__ = ["create_app"]
