#!/usr/bin/env python3

from urllib.parse import quote, urlsplit

# Characters that end a path segment in the final address
_SEGMENT_TERMINATORS = ('/', '?', '#')


class AddressScheme:
    """Maps (peer, resource) to a probe address and reads back redirects.

    A probe for a peer that holds the resource stays on an address containing
    ``resource_marker``; one that does not gets redirected elsewhere.
    """

    def __init__(self, address_template: str, resource_marker: str):
        self.address_template = address_template
        self.resource_marker = resource_marker

    @classmethod
    def from_settings(cls, settings) -> 'AddressScheme':
        return cls(settings.address_template, settings.resource_marker)

    def probe_address(self, peer: str, resource: str) -> str:
        return self.address_template.format(
            peer=quote(str(peer), safe=''),
            resource=quote(str(resource), safe='')
        )

    def names_resource(self, final_address: str, resource: str) -> bool:
        """Check whether ``final_address`` still points at ``resource``.

        The marker has to end on a segment boundary so that resource ``12``
        is not found inside ``/recommended/123``.
        """
        if not final_address:
            return False
        marker = self.resource_marker.format(resource=quote(str(resource), safe=''))
        parts = urlsplit(final_address)
        target = parts.path
        if parts.query:
            target = f"{target}?{parts.query}"

        start = target.find(marker)
        while start != -1:
            end = start + len(marker)
            if end == len(target) or target[end] in _SEGMENT_TERMINATORS:
                return True
            start = target.find(marker, start + 1)
        return False
