"""
WebSub topic discovery for SensorThings services.

Every request to a versioned SensorThings path is answered with a
`Link` header advertising the hub. A resource of a known entity type
that is on the publisher's allow-list of root topics also gets its
canonical topic URL as `rel="self"`; anything else gets a diagnostic
link saying why it can't be subscribed to.

Discovery probes (`HEAD`) are answered here and never reach the entity
service. Creates and updates are passed through with an empty result
format and no links.

    >>> settings = {"serviceRootUrl": "https://example.org/sta",
    ...             "plugins": {"websub.enable": "true",
    ...                         "websub.rootTopics": "Observations",
    ...                         "websub.hubUrl": "https://hub.example.org"}}
    >>> cfg = Configuration.from_settings(settings)
    >>> registry = sensorthings.EntityTypes(sensorthings.SENSING)
    >>> Topic(cfg, registry, "v1.1", "/Observations").links
    ['<https://hub.example.org>; rel="hub"', \
'<https://example.org/sta/v1.1/Observations>; rel="self"']
    >>> Topic(cfg, registry, "v1.1", "/Things").links[1]
    '</error#entityNotAllowed>; rel="help"'

"""

import collections
import logging
import re
import urllib.parse

from . import sensorthings
from .framework import as_bool, header, tx
from .response import OK, BadRequest, Forbidden, NotFound

__all__ = ["Configuration", "ConfigurationError", "Topic", "Outcome",
           "QueryFlags", "request_kind", "entity_name", "is_valid_entity",
           "is_allowed_topic", "query_flags", "decide", "topic_url",
           "encode_query", "link", "modify_service_document", "topics",
           "install"]

log = logging.getLogger(__name__)

CREATE = "create"
READ = "read"
UPDATE_ALL = "updateAll"
UPDATE_CHANGES = "updateChanges"
UPDATE_CHANGESET = "updateChangeset"
DELETE = "delete"
GET_CAPABILITIES = "getCapabilities"
DISCOVER = "websub"

mutating = (CREATE, UPDATE_ALL, UPDATE_CHANGES, UPDATE_CHANGESET)

ODATA_QUERY_DISABLED = "odataQueryDisabled"
ODATA_FILTER_DISABLED = "odataQueryFilterDisabled"
ODATA_EXPAND_DISABLED = "odataQueryExpandDisabled"
ENTITY_INVALID = "entityInvalid"
ENTITY_NOT_ALLOWED = "entityNotAllowed"

REQUIREMENT_WEBSUB = "https://github.com/securedimensions/FROST-Server-WebSub"
DEFAULT_HELP_URL = "/error"
DEFAULT_ERROR_REL = "http://ogc.org/websub/1.0/error"

_entity_set_re = re.compile(r"[^(/]*")


class ConfigurationError(ValueError):

    """Settings that keep topic annotation from being installed."""


_fields = ["enabled", "allow_odata_query", "allow_filter", "allow_expand",
           "root_topics", "hub_url", "help_url", "help_rel", "root_url"]


class Configuration(collections.namedtuple("Configuration", _fields)):

    """
    WebSub settings, read once at startup

    `help_url` is the base of every diagnostic link and `help_rel` their
    relation type. `help` is used with `websub.helpUrl`; the older
    `websub.errorUrl` key pairs with a relation URI from
    `websub.errorRel`.

    """

    __slots__ = ()

    @classmethod
    def from_settings(cls, settings):
        """
        return the configuration held in `settings`

        Raises `ConfigurationError` when enabled without an absolute
        service root or hub URL.

        """
        plugins = settings.get("plugins", {})
        mqtt = settings.get("mqtt", {})
        try:
            enabled = as_bool(plugins.get("websub.enable", False))
            allow_odata_query = as_bool(plugins.get("websub.enable.odataQuery",
                                                    False))
            allow_filter = as_bool(mqtt.get("allowFilter", False))
            allow_expand = as_bool(mqtt.get("allowExpand", False))
        except ValueError as err:
            raise ConfigurationError(str(err))
        root_topics = tuple(topic.strip() for topic
                            in str(plugins.get("websub.rootTopics",
                                               "-")).split(",")
                            if topic.strip()) or ("-",)
        if "websub.helpUrl" in plugins:
            help_url = plugins["websub.helpUrl"]
            help_rel = "help"
        elif "websub.errorUrl" in plugins:
            help_url = plugins["websub.errorUrl"]
            help_rel = DEFAULT_ERROR_REL
        else:
            help_url = DEFAULT_HELP_URL
            help_rel = "help"
        help_rel = plugins.get("websub.errorRel", help_rel)
        cfg = cls(enabled=enabled,
                  allow_odata_query=allow_odata_query,
                  allow_filter=allow_filter,
                  allow_expand=allow_expand,
                  root_topics=root_topics,
                  hub_url=str(plugins.get("websub.hubUrl", "")),
                  help_url=str(help_url).rstrip("/#"),
                  help_rel=help_rel,
                  root_url=str(settings.get("serviceRootUrl",
                                            "")).rstrip("/"))
        if cfg.enabled:
            cfg.validate()
        return cfg

    def validate(self):
        """Raise `ConfigurationError` unless the URLs are usable."""
        for name, url in (("serviceRootUrl", self.root_url),
                          ("websub.hubUrl", self.hub_url)):
            parts = urllib.parse.urlsplit(url)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ConfigurationError(f"`{name}` must be an absolute "
                                         f"http(s) URL, not `{url}`")
        if not self.help_url:
            raise ConfigurationError("`websub.helpUrl` must not be empty")


def request_kind(method, path, content_type=None):
    """
    return the kind of request for `method` on `path`, None if unknown

        >>> request_kind("HEAD", "/Things")
        'websub'
        >>> request_kind("PATCH", "/Things(1)", "application/json-patch+json")
        'updateChangeset'

    """
    method = method.upper()
    if method == "DELETE":
        return DELETE
    if method == "GET":
        if path in ("", "/"):
            return GET_CAPABILITIES
        return READ
    if method == "PATCH":
        if content_type and \
           content_type.startswith(sensorthings.CONTENT_TYPE_JSONPATCH):
            return UPDATE_CHANGESET
        return UPDATE_CHANGES
    if method == "POST":
        return CREATE
    if method == "PUT":
        return UPDATE_ALL
    if method == "HEAD":
        return DISCOVER
    return None


def entity_name(url_path):
    """Return the entity named by `url_path` without its leading slash."""
    return url_path[1:] if url_path else url_path


def is_valid_entity(registry, name):
    """Return whether `name` starts with an entity set of the model."""
    if name is None:
        return False
    return registry.resolve(_entity_set_re.match(name).group()) is not None


def is_allowed_topic(root_topics, name):
    """
    return whether `name` starts with one of the `root_topics`

        >>> is_allowed_topic(("Parties",), "Parties('abc')")
        True

    """
    if not root_topics or name is None:
        return False
    return any(name.startswith(topic) for topic in root_topics)


QueryFlags = collections.namedtuple("QueryFlags", "query filter expand")


def query_flags(query):
    """Return which OData operators the raw `query` carries."""
    if query is None:
        return QueryFlags(False, False, False)
    return QueryFlags(True, "filter=" in query, "expand=" in query)


Outcome = collections.namedtuple("Outcome", "subscribable diagnostics")


def decide(cfg, entity_valid, topic_allowed, flags):
    """
    return whether the resource is a topic or the diagnostics why not

    """
    if not entity_valid:
        return Outcome(False, (ENTITY_INVALID,))
    if not topic_allowed:
        return Outcome(False, (ENTITY_NOT_ALLOWED,))
    if flags.query and not cfg.allow_odata_query:
        return Outcome(False, (ODATA_QUERY_DISABLED,))
    diagnostics = []
    if flags.filter and not cfg.allow_filter:
        diagnostics.append(ODATA_FILTER_DISABLED)
    if flags.expand and not cfg.allow_expand:
        diagnostics.append(ODATA_EXPAND_DISABLED)
    if diagnostics:
        return Outcome(False, tuple(diagnostics))
    return Outcome(True, ())


def encode_query(query):
    """
    return `query` with commas and spaces percent-encoded

        >>> encode_query("$select=id,result&$filter=result gt 5")
        '$select=id%2Cresult&$filter=result%20gt%205'

    """
    return query.replace(",", "%2C").replace(" ", "%20")


def topic_url(cfg, version, url_path, query=None):
    """Return the canonical topic URL of a request."""
    url = f"{cfg.root_url}/{version}{url_path}"
    if cfg.allow_odata_query and query is not None:
        url += "?" + encode_query(query)
    return url


def link(target, rel):
    """Return a single `Link` header value."""
    return f'<{target}>; rel="{rel}"'


class Topic:

    """
    the WebSub view of one requested resource

    """

    def __init__(self, cfg, registry, version, url_path, query=None):
        self.cfg = cfg
        self.version = version
        self.url_path = url_path
        self.query = query
        self.entity_name = entity_name(url_path)
        self.entity_valid = is_valid_entity(registry, self.entity_name)
        self.allowed = is_allowed_topic(cfg.root_topics, self.entity_name)
        self.flags = query_flags(query)
        self.outcome = decide(cfg, self.entity_valid, self.allowed,
                              self.flags)

    def __repr__(self):
        return f"<Topic {self.version}{self.url_path}: {self.outcome}>"

    @property
    def url(self):
        return topic_url(self.cfg, self.version, self.url_path, self.query)

    @property
    def links(self):
        """The hub link followed by the self or diagnostic links."""
        links = [link(self.cfg.hub_url, "hub")]
        if self.outcome.subscribable:
            links.append(link(self.url, "self"))
        for tag in self.outcome.diagnostics:
            links.append(link(f"{self.cfg.help_url}#{tag}",
                              self.cfg.help_rel))
        return links

    @property
    def status(self):
        """The status answering a discovery probe."""
        diagnostics = self.outcome.diagnostics
        if not diagnostics:
            return OK("")
        if ENTITY_INVALID in diagnostics:
            return NotFound("")
        if ENTITY_NOT_ALLOWED in diagnostics:
            return Forbidden("")
        return BadRequest("")


def modify_service_document(document):
    """Add WebSub to the conformance list of a capabilities document."""
    try:
        server_settings = document.get(sensorthings.KEY_SERVER_SETTINGS)
    except AttributeError:
        return document
    if server_settings is None:
        return document
    conformance = server_settings.setdefault(
        sensorthings.KEY_CONFORMANCE_LIST, [])
    if isinstance(conformance, set):
        conformance.add(REQUIREMENT_WEBSUB)
    elif REQUIREMENT_WEBSUB not in conformance:
        conformance.append(REQUIREMENT_WEBSUB)
    return document


def topics(cfg, registry):
    """
    return an application wrapper annotating requests with WebSub links

    """
    def annotate(handler, app):
        try:
            version, url_path = sensorthings.split_version(tx.request.path)
        except ValueError:
            yield
            return
        kind = request_kind(tx.request.method, url_path,
                            tx.request.headers.content_type)
        if kind is None:
            yield
            return
        if kind in mutating:
            tx.request.params.setdefault(sensorthings.PARAM_RESULT_FORMAT,
                                         sensorthings.FORMAT_EMPTY)
            yield
            return
        topic = Topic(cfg, registry, version, url_path, tx.request.query)
        log.debug("%s %s: %s", tx.request.method, tx.request.path, topic)
        tx.log.store(f"websub {topic.outcome}")
        for value in topic.links:
            header("Link", value, add=True)
        if kind == DISCOVER:
            raise topic.status
        yield
        if kind == GET_CAPABILITIES:
            modify_service_document(tx.response.body)
    return annotate


def install(app, settings, registry=None):
    """
    wrap `app` with topic annotation when WebSub is enabled in `settings`

    Returns the configuration in use, None when disabled.

    """
    cfg = Configuration.from_settings(settings)
    if not cfg.enabled:
        log.info("WebSub disabled for %s", app.name)
        return None
    if registry is None:
        registry = sensorthings.EntityTypes.from_settings(settings)
    app.wrap(topics(cfg, registry), "pre")
    log.info("WebSub enabled for %s, hub %s, root topics %s", app.name,
             cfg.hub_url, ",".join(cfg.root_topics))
    return cfg
