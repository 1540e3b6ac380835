"""HTTP clients for external service communication."""

from escrow_board_service.clients.identity_client import IdentityClient

__all__ = ["IdentityClient"]
