"""Single-probe classification with rate-limit aware retries."""

from .address import AddressScheme
from .prober import Prober
from .retry import RetryOutcome, RetryPolicy

__all__ = ['AddressScheme', 'Prober', 'RetryOutcome', 'RetryPolicy']
