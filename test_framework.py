"""

"""

import json

import pytest

from staweb import sensorthings
from staweb.framework import Application, as_bool, header, load_config, tx
from staweb.headers import Headers
from staweb.response import BadRequest, Created


def test_headers():
    headers = Headers({"content_type": "text/plain"})
    assert headers["Content-Type"] == "text/plain"
    assert headers.content_type == "text/plain"
    assert headers.location is None
    headers.add("Link", '</hub>; rel="hub"')
    headers.add("link", '</Things>; rel="self"')
    assert headers.get_list("LINK") == ['</hub>; rel="hub"',
                                        '</Things>; rel="self"']
    assert headers.wsgi == [("Content-Type", "text/plain"),
                            ("Link", '</hub>; rel="hub"'),
                            ("Link", '</Things>; rel="self"')]
    assert "content-type" in headers
    assert headers.get_list("Allow") == []


def test_as_bool():
    for value in (True, "true", "True", "1", "yes", " on "):
        assert as_bool(value) is True
    for value in (False, "false", "FALSE", "0", "no", "off", ""):
        assert as_bool(value) is False
    with pytest.raises(ValueError):
        as_bool("sometimes")


def test_load_config(tmp_path, monkeypatch):
    monkeypatch.delenv("STACFG", raising=False)
    path = tmp_path / "staweb.json"
    path.write_text(json.dumps({"serviceRootUrl": "http://example.org"}))
    assert load_config(path) == {"serviceRootUrl": "http://example.org"}
    assert load_config(tmp_path / "missing.json") == {}
    assert load_config() == {}
    monkeypatch.setenv("STACFG", str(path))
    assert load_config()["serviceRootUrl"] == "http://example.org"


@pytest.fixture
def app():
    app = Application("test")

    @app.wrap
    def announce(handler, app):
        header("Link", '</hub>; rel="hub"', add=True)
        yield
        header("X-Seen", tx.response.status)

    @app.route(r"items/(?P<name>\w+)")
    class Item:
        def _get(self):
            return {"name": self.name}

        def _post(self):
            raise Created("", location=f"/items/{tx.request.json['name']}")

        def _delete(self):
            pass

    @app.route(r"broken")
    class Broken:
        def _get(self):
            raise RuntimeError("broken")

        def _put(self):
            raise BadRequest("bad")

    return app


def test_json_response(app):
    status, headers, body = app.request("GET", "items/one")
    assert status == "200 OK"
    assert json.loads(body) == {"name": "one"}
    assert ("Content-Type", "application/json") in headers
    assert ("Link", '</hub>; rel="hub"') in headers
    assert ("X-Seen", "200 OK") in headers


def test_head_drops_body(app):
    status, headers, body = app.request("HEAD", "items/one")
    assert status == "200 OK"
    assert body == b""


def test_created(app):
    status, headers, body = app.request("POST", "items/one",
                                        body={"name": "two"})
    assert status == "201 Created"
    assert ("Location", "/items/two") in headers


def test_no_content(app):
    status, _, body = app.request("DELETE", "items/one")
    assert status == "204 No Content"
    assert body == b""


def test_statuses(app):
    assert app.request("GET", "nowhere")[0] == "404 Not Found"
    assert app.request("POST", "nowhere")[0] == "404 Not Found"
    assert app.request("PUT", "broken")[0] == "400 Bad Request"
    assert app.request("GET", "broken")[0] == "500 Internal Server Error"
    status, headers, _ = app.request("PATCH", "items/one")
    assert status == "405 Method Not Allowed"
    assert ("Allow", "GET, POST, DELETE") in headers


def test_bad_json(app):
    status, _, _ = app.request("POST", "items/one", body="{not json")
    assert status == "400 Bad Request"


def test_wrappers_must_be_generators():
    app = Application("plain")

    def plain(handler, app):
        return None

    app.wrap(plain)

    @app.route(r"")
    class Root:
        def _get(self):
            return "root"

    assert app.request("GET", "")[0] == "500 Internal Server Error"


def test_split_version():
    assert sensorthings.split_version("v1.1/Things(1)") == \
        ("v1.1", "/Things(1)")
    assert sensorthings.split_version("/v1.0/") == ("v1.0", "/")
    assert sensorthings.split_version("v1.1") == ("v1.1", "")
    for path in ("", "Things", "v2.0/Things", "v1.1Things"):
        with pytest.raises(ValueError):
            sensorthings.split_version(path)


def test_parse_entity_path():
    parse = sensorthings.parse_entity_path
    assert parse("/Things") == ("Things", None, None)
    assert parse("/Things(42)") == ("Things", 42, None)
    assert parse("/Parties('ff10')") == ("Parties", "ff10", None)
    assert parse("/Things(1)/Datastreams") == ("Things", 1, "/Datastreams")
    with pytest.raises(ValueError):
        parse("/")


def test_entity_types():
    types = sensorthings.EntityTypes.from_settings({})
    assert "Observations" in types
    assert "ObservedProperties" in types
    assert "MultiDatastreams" not in types
    assert "Parties" not in types
    assert types.resolve(None) is None
    settings = {"plugins": {"multiDatastream.enable": "true",
                            "staplus.enable": True}}
    types = sensorthings.EntityTypes.from_settings(settings)
    assert types.resolve("MultiDatastreams").model == "multiDatastream"
    assert types.resolve("Relations").singular == "Relation"
    assert len(types) == 14
    with pytest.raises(ValueError):
        sensorthings.EntityTypes("unknown")


def test_service_crud():
    registry = sensorthings.EntityTypes(sensorthings.SENSING)
    app = sensorthings.service(registry, "http://example.org/sta/")
    status, headers, body = app.request("POST", "v1.1/Things",
                                        body={"name": "thing"})
    assert status == "201 Created"
    thing = json.loads(body)
    assert thing["@iot.id"] == 1
    assert thing["@iot.selfLink"] == "http://example.org/sta/v1.1/Things(1)"
    status, _, _ = app.request("POST", "v1.1/Things",
                               body={"@iot.id": 1, "name": "again"})
    assert status == "409 Conflict"
    status, _, body = app.request("PATCH", "v1.1/Things(1)",
                                  body={"description": "a thing"})
    assert status == "200 OK"
    assert json.loads(body)["description"] == "a thing"
    _, _, body = app.request("GET", "v1.1/Things")
    assert [t["name"] for t in json.loads(body)["value"]] == ["thing"]
    assert app.request("DELETE", "v1.1/Things")[0] == "400 Bad Request"
    assert app.request("GET", "v1.1/Things(1)/Datastreams")[0] == \
        "400 Bad Request"
    assert app.request("DELETE", "v1.1/Things(1)")[0] == "204 No Content"
    assert app.request("DELETE", "v1.1/Things(1)")[0] == "404 Not Found"
    assert app.request("GET", "v9.9")[0] == "404 Not Found"


def test_service_rejects_unsupported_patch():
    registry = sensorthings.EntityTypes(sensorthings.SENSING)
    app = sensorthings.service(registry)
    app.request("POST", "v1.1/Things", body={"name": "thing"})
    status, _, _ = app.request(
        "PATCH", "v1.1/Things(1)",
        headers={"Content-Type": "application/json-patch+json"},
        body=[{"op": "move", "path": "/name", "from": "/title"}])
    assert status == "400 Bad Request"


def test_service_rejects_non_object_bodies():
    registry = sensorthings.EntityTypes(sensorthings.SENSING)
    app = sensorthings.service(registry)
    assert app.request("POST", "v1.1/Things", body=[1])[0] == \
        "400 Bad Request"
    app.request("POST", "v1.1/Things", body={"name": "thing"})
    assert app.request("PUT", "v1.1/Things(1)", body=[1])[0] == \
        "400 Bad Request"
    assert app.request("PATCH", "v1.1/Things(1)", body="5")[0] == \
        "400 Bad Request"
    jsonpatch = {"Content-Type": "application/json-patch+json"}
    for body in ({"op": "remove", "path": "/name"}, ["remove"]):
        status, _, _ = app.request("PATCH", "v1.1/Things(1)",
                                   headers=jsonpatch, body=body)
        assert status == "400 Bad Request"
    _, _, body = app.request("GET", "v1.1/Things(1)")
    assert json.loads(body)["name"] == "thing"
