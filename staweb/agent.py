"""Subscriber side of WebSub topic discovery."""

import collections
import logging
import urllib.parse

import requests

__all__ = ["discover", "parse_links", "Discovery", "DiscoveryFailed"]

log = logging.getLogger(__name__)

Discovery = collections.namedtuple("Discovery",
                                   "hub topic diagnostics status")
Discovery.__doc__ = """
the links a publisher advertises for a topic

`diagnostics` holds the fragment tags of any diagnostic links, e.g.
`entityNotAllowed`. `topic` is None unless the resource can be
subscribed to.

"""


class DiscoveryFailed(Exception):

    """The topic URL could not be reached."""


def parse_links(value):
    """
    return `(target, rel)` pairs of a `Link` header value

    Several links may share one header, separated by commas.

        >>> parse_links('</hub>; rel="hub", </v1.1/Things>; rel="self"')
        [('/hub', 'hub'), ('/v1.1/Things', 'self')]

    """
    if not value:
        return []
    return [(link["url"], link["rel"])
            for link in requests.utils.parse_header_links(value)
            if link.get("rel")]


def discover(url, timeout=10, **kwargs):
    """
    return the hub and topic advertised for `url`

    Sends a discovery probe (`HEAD`). Optionally pass typical
    `requests.request` arguments as `kwargs`.

    """
    try:
        response = requests.head(url, timeout=timeout, allow_redirects=True,
                                 **kwargs)
    except requests.exceptions.RequestException as err:
        raise DiscoveryFailed(f"could not reach `{url}`") from err
    hub = topic = None
    diagnostics = []
    for target, rel in parse_links(response.headers.get("Link")):
        if rel == "hub":
            hub = hub or target
        elif rel == "self":
            topic = topic or target
        else:
            diagnostics.append(urllib.parse.urldefrag(target).fragment)
    log.debug("discovered %s: hub=%s topic=%s diagnostics=%s", url, hub,
              topic, diagnostics)
    return Discovery(hub, topic, tuple(diagnostics), response.status_code)
