#!/usr/bin/env python3

import logging
from typing import Iterable, Union

from ..exceptions import TransportError
from ..models import ProbeResult, ProbeStatus
from ..transport.http_transport import TransportResponse
from .address import AddressScheme
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class Prober:
    """Classifies one (peer, resource) pair with a single logical request.

    The final, post-redirect address is the only signal used: a probe that
    lands on an address still naming the resource is present. Everything that
    is neither success nor rate limiting counts as absent.
    """

    def __init__(self, transport, address_scheme: AddressScheme, retry_policy: RetryPolicy,
                 rate_limit_statuses: Iterable[int] = (429,)):
        self.transport = transport
        self.address_scheme = address_scheme
        self.retry_policy = retry_policy
        self.rate_limit_statuses = frozenset(rate_limit_statuses)

    async def _request(self, address: str) -> Union[TransportResponse, TransportError]:
        try:
            return await self.transport.request(address)
        except TransportError as e:
            return e
        except Exception as e:
            # Transports other than HttpTransport may leak their own errors
            return TransportError(f"Request to {address} failed: {e!r}", address=address)

    def _is_rate_limited(self, value) -> bool:
        if isinstance(value, TransportError):
            return value.rate_limited
        return value.status_code in self.rate_limit_statuses

    async def probe(self, peer: str, resource: str) -> ProbeResult:
        address = self.address_scheme.probe_address(peer, resource)
        outcome = await self.retry_policy.execute(
            lambda: self._request(address),
            self._is_rate_limited,
            label=f"peer {peer}"
        )

        if outcome.exhausted:
            status = ProbeStatus.TRANSIENT_FAILURE_EXHAUSTED
        elif isinstance(outcome.value, TransportError):
            logger.warning(f"Probe for peer {peer} failed, treating as absent: {outcome.value}")
            status = ProbeStatus.ABSENT
        elif not outcome.value.ok:
            logger.debug(f"Probe for peer {peer} returned HTTP {outcome.value.status_code}")
            status = ProbeStatus.ABSENT
        elif self.address_scheme.names_resource(outcome.value.final_address, resource):
            status = ProbeStatus.PRESENT
        else:
            status = ProbeStatus.ABSENT

        logger.debug(f"peer {peer} | resource {resource} | {status.value} | "
                     f"{outcome.attempts} attempt(s) | {outcome.elapsed:.2f}s")
        return ProbeResult(
            peer=peer,
            resource=resource,
            status=status,
            attempts=outcome.attempts,
            elapsed=outcome.elapsed
        )
