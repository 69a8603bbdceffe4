"""Access to the service container built at startup."""
from fastapi import Request

from folio.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services
