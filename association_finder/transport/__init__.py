"""Network transport used by the prober."""

from .http_transport import HttpTransport, TransportResponse

__all__ = ['HttpTransport', 'TransportResponse']
