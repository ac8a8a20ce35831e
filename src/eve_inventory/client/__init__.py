"""ESI client - rate-limited, self-reauthenticating implementation."""
from .rate_limiter import DispatchQueue
from .esi_client import EsiClient


__all__ = ['DispatchQueue', 'EsiClient']
