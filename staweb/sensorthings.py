"""
SensorThings API host: entity-type registry and an in-memory service.

The registry answers which entity types the active data model knows.
Model sets are activated from the `plugins` section of the settings,
the core sensing model is always active.

    >>> types = EntityTypes(SENSING, STAPLUS)
    >>> types.resolve("Parties").singular
    'Party'
    >>> types.resolve("MultiDatastreams") is None
    True

"""

import collections
import itertools
import logging
import re

from .framework import Application, as_bool, tx
from .response import BadRequest, Created, NotFound, Conflict

__all__ = ["EntityType", "EntityTypes", "SENSING", "MULTI_DATASTREAM",
           "STAPLUS", "versions", "split_version", "parse_entity_path",
           "service", "Store", "KEY_SERVER_SETTINGS", "KEY_CONFORMANCE_LIST",
           "PARAM_RESULT_FORMAT", "FORMAT_EMPTY", "CONTENT_TYPE_JSONPATCH"]

log = logging.getLogger(__name__)

SENSING = "sensing"
MULTI_DATASTREAM = "multiDatastream"
STAPLUS = "staplus"

models = {SENSING: [("Things", "Thing"),
                    ("Locations", "Location"),
                    ("HistoricalLocations", "HistoricalLocation"),
                    ("Datastreams", "Datastream"),
                    ("Sensors", "Sensor"),
                    ("ObservedProperties", "ObservedProperty"),
                    ("Observations", "Observation"),
                    ("FeaturesOfInterest", "FeatureOfInterest")],
          MULTI_DATASTREAM: [("MultiDatastreams", "MultiDatastream")],
          STAPLUS: [("Parties", "Party"),
                    ("Licenses", "License"),
                    ("Campaigns", "Campaign"),
                    ("ObservationGroups", "ObservationGroup"),
                    ("Relations", "Relation")]}

versions = ("v1.0", "v1.1")

KEY_SERVER_SETTINGS = "serverSettings"
KEY_CONFORMANCE_LIST = "conformance"
PARAM_RESULT_FORMAT = "$resultFormat"
FORMAT_EMPTY = "empty"
CONTENT_TYPE_JSONPATCH = "application/json-patch+json"

conformance = ["http://www.opengis.net/spec/iot_sensing/1.1/req/datamodel",
               "http://www.opengis.net/spec/iot_sensing/1.1/req/"
               "resource-path/resource-path-to-entities",
               "http://www.opengis.net/spec/iot_sensing/1.1/req/"
               "create-update-delete",
               "http://www.opengis.net/spec/iot_sensing/1.1/req/"
               "create-update-delete/update-entity-jsonpatch"]

_version_re = re.compile(r"^(v\d+\.\d+)(/.*)?$")
_entity_path_re = re.compile(r"^/(?P<name>[A-Za-z]+)"
                             r"(?:\((?P<id>[^)]*)\))?(?P<rest>/.*)?$")

EntityType = collections.namedtuple("EntityType", "name singular model")


class EntityTypes:

    """
    entity types of the active data model, keyed by entity set name

    """

    def __init__(self, *model_names):
        self.types = collections.OrderedDict()
        for model in model_names:
            try:
                entity_sets = models[model]
            except KeyError:
                raise ValueError(f"unknown data model `{model}`")
            for name, singular in entity_sets:
                self.types[name] = EntityType(name, singular, model)

    @classmethod
    def from_settings(cls, settings):
        """Activate the model sets switched on in `settings`."""
        plugins = settings.get("plugins", {})
        model_names = [SENSING]
        if as_bool(plugins.get("multiDatastream.enable", False)):
            model_names.append(MULTI_DATASTREAM)
        if as_bool(plugins.get("staplus.enable", False)):
            model_names.append(STAPLUS)
        return cls(*model_names)

    def resolve(self, name):
        """Return the entity type for entity set `name`, or None."""
        if name is None:
            return None
        return self.types.get(name)

    def __contains__(self, name):
        return self.resolve(name) is not None

    def __iter__(self):
        return iter(self.types.values())

    def __len__(self):
        return len(self.types)


def split_version(path):
    """
    return `(version, url_path)` for a versioned request path

        >>> split_version("v1.1/Things(1)")
        ('v1.1', '/Things(1)')
        >>> split_version("v1.1")
        ('v1.1', '')

    """
    match = _version_re.match(path.lstrip("/"))
    if not match or match.group(1) not in versions:
        raise ValueError(f"`{path}` is not a versioned SensorThings path")
    return match.group(1), match.group(2) or ""


def parse_entity_path(url_path):
    """
    return `(entity_set, entity_id, rest)` of an entity path

    Numeric ids become integers, quoted ids lose their quotes.

    """
    match = _entity_path_re.match(url_path)
    if not match:
        raise ValueError(f"`{url_path}` is not an entity path")
    entity_id = match.group("id")
    if entity_id is not None:
        if entity_id.isdigit():
            entity_id = int(entity_id)
        else:
            entity_id = entity_id.strip("'")
    return match.group("name"), entity_id, match.group("rest")


def expect_object(value):
    """Return `value` if it is a JSON object, else raise `BadRequest`."""
    if not isinstance(value, dict):
        raise BadRequest("expected a JSON object")
    return value


class Store:

    """Entities held in memory, keyed by entity set and id."""

    def __init__(self):
        self.entities = collections.defaultdict(collections.OrderedDict)
        self.ids = itertools.count(1)

    def all(self, entity_set):
        return list(self.entities[entity_set].values())

    def get(self, entity_set, entity_id):
        try:
            return self.entities[entity_set][entity_id]
        except KeyError:
            raise NotFound(f"no `{entity_set}({entity_id})`")

    def create(self, entity_set, properties):
        properties = dict(expect_object(properties))
        entity_id = properties.pop("@iot.id", None)
        if entity_id is None:
            entity_id = next(self.ids)
        if entity_id in self.entities[entity_set]:
            raise Conflict(f"`{entity_set}({entity_id})` already exists")
        entity = dict(properties)
        entity["@iot.id"] = entity_id
        self.entities[entity_set][entity_id] = entity
        return entity

    def replace(self, entity_set, entity_id, properties):
        expect_object(properties)
        self.get(entity_set, entity_id)
        entity = dict(properties)
        entity["@iot.id"] = entity_id
        self.entities[entity_set][entity_id] = entity
        return entity

    def merge(self, entity_set, entity_id, changes):
        expect_object(changes)
        entity = self.get(entity_set, entity_id)
        entity.update(changes)
        entity["@iot.id"] = entity_id
        return entity

    def patch(self, entity_set, entity_id, operations):
        """Apply JSON Patch `operations` on top-level properties."""
        if not isinstance(operations, list):
            raise BadRequest("a JSON Patch document is a list of operations")
        entity = self.get(entity_set, entity_id)
        for operation in operations:
            expect_object(operation)
            op = operation.get("op")
            key = operation.get("path", "").lstrip("/")
            if not key or "/" in key or key == "@iot.id":
                raise BadRequest(f"unsupported patch path `{key}`")
            if op in ("add", "replace"):
                entity[key] = operation.get("value")
            elif op == "remove":
                entity.pop(key, None)
            else:
                raise BadRequest(f"unsupported patch operation `{op}`")
        return entity

    def delete(self, entity_set, entity_id):
        self.get(entity_set, entity_id)
        del self.entities[entity_set][entity_id]


def service(registry, root_url="", name="SensorThings", store=None):
    """
    return an application serving the entity sets of `registry`

    Serves the capabilities document at each version root and plain
    create, read, update and delete on entity sets and single entities.

    """
    app = Application(name)
    store = store if store is not None else Store()
    root_url = root_url.rstrip("/")

    def self_link(version, entity_set, entity_id):
        if isinstance(entity_id, int):
            return f"{root_url}/{version}/{entity_set}({entity_id})"
        return f"{root_url}/{version}/{entity_set}('{entity_id}')"

    def represent(version, entity_set, entity):
        entity = dict(entity)
        entity["@iot.selfLink"] = self_link(version, entity_set,
                                            entity["@iot.id"])
        return entity

    def wants_empty():
        return tx.request.params.get(PARAM_RESULT_FORMAT) == FORMAT_EMPTY

    @app.route(r"(?P<version>v\d+\.\d+)/?")
    class Capabilities:
        """The service document listing entity sets and conformance."""

        def _get(self):
            if self.version not in versions:
                raise NotFound(f"unsupported version `{self.version}`")
            entity_sets = [{"name": t.name,
                            "url": f"{root_url}/{self.version}/{t.name}"}
                           for t in registry]
            return {"value": entity_sets,
                    KEY_SERVER_SETTINGS: {KEY_CONFORMANCE_LIST:
                                          list(conformance)}}

    @app.route(r"(?P<version>v\d+\.\d+)(?P<path>/.+)")
    class Entities:
        """Entity sets and single entities."""

        def _locate(self):
            if self.version not in versions:
                raise NotFound(f"unsupported version `{self.version}`")
            try:
                entity_set, entity_id, rest = parse_entity_path(self.path)
            except ValueError:
                raise NotFound(f"no resource at `{self.path}`")
            if registry.resolve(entity_set) is None:
                raise NotFound(f"no entity set `{entity_set}`")
            if rest and rest != "/":
                raise BadRequest("navigation paths are not supported")
            return entity_set, entity_id

        def _single(self):
            entity_set, entity_id = self._locate()
            if entity_id is None:
                raise BadRequest("an entity id is required")
            return entity_set, entity_id

        def _get(self):
            entity_set, entity_id = self._locate()
            if entity_id is None:
                return {"value": [represent(self.version, entity_set, e)
                                  for e in store.all(entity_set)]}
            return represent(self.version, entity_set,
                             store.get(entity_set, entity_id))

        def _post(self):
            entity_set, entity_id = self._locate()
            if entity_id is not None:
                raise BadRequest("create on an entity set, not an entity")
            entity = store.create(entity_set, tx.request.json)
            location = self_link(self.version, entity_set, entity["@iot.id"])
            log.debug("created %s", location)
            body = "" if wants_empty() else represent(self.version,
                                                      entity_set, entity)
            raise Created(body, location=location)

        def _put(self):
            entity_set, entity_id = self._single()
            entity = store.replace(entity_set, entity_id, tx.request.json)
            return self._updated(entity_set, entity)

        def _patch(self):
            entity_set, entity_id = self._single()
            content_type = tx.request.headers.content_type or ""
            if content_type.startswith(CONTENT_TYPE_JSONPATCH):
                entity = store.patch(entity_set, entity_id, tx.request.json)
            else:
                entity = store.merge(entity_set, entity_id, tx.request.json)
            return self._updated(entity_set, entity)

        def _delete(self):
            entity_set, entity_id = self._single()
            store.delete(entity_set, entity_id)

        def _updated(self, entity_set, entity):
            if wants_empty():
                return None
            return represent(self.version, entity_set, entity)

    return app
