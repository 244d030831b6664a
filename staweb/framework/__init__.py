"""
A small web application framework for SensorThings services.

An application is a WSGI callable that routes a request path to a
resource class and calls the resource's handler for the request method.
Wrappers are generators run around every handler: the code before the
`yield` sees the request, the code after it sees the response.

    >>> app = Application("example")
    >>> @app.wrap
    ... def contextualize(handler, app):
    ...     yield
    >>> @app.route(r"")
    ... class Greeting:
    ...     def _get(self):
    ...         return "hello world"
    >>> response = app.request("GET", "")
    >>> response[0]
    '200 OK'
    >>> response[2]
    b'hello world'

"""

import inspect
import io
import json
import logging
import os
import pathlib
import re
import time
import urllib.parse

import gevent.pywsgi
from gevent import local

from .. import headers
from ..response import (Status, NoContent, BadRequest, NotFound,
                        MethodNotAllowed, InternalServerError)

__all__ = ["Application", "Resource", "tx", "header",
           "as_bool", "load_config", "JSONEncoder", "methods"]

log = logging.getLogger(__name__)
methods = ["head", "get", "post", "put", "delete", "options", "patch"]


def load_config(path=None):
    """
    return settings read from the JSON file at `path`

    The `STACFG` environment variable takes precedence. A missing file
    yields empty settings.

    """
    path = os.getenv("STACFG", path)
    try:
        with pathlib.Path(path).open() as fp:
            return json.load(fp)
    except (FileNotFoundError, TypeError):
        return {}


def as_bool(value):
    """
    return a boolean for a setting given as a JSON boolean or a string

        >>> as_bool("True"), as_bool("0"), as_bool(False)
        (True, False, False)

    """
    if isinstance(value, bool):
        return value
    value = str(value).strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off", ""):
        return False
    raise ValueError(f"`{value}` is not a boolean setting")


def header(name, value, add=False):
    """Set a response header, or append to it when `add` is set."""
    if add:
        tx.response.headers.add(name, value)
    else:
        tx.response.headers[name] = value


class Resource:

    """Base of every routed resource; path groups become attributes."""

    def __init__(self, **kwargs):
        self.__dict__.update(kwargs)


class Application:

    """a web application"""

    def __init__(self, name, *wrappers):
        self.name = name
        self.wrappers = []
        self.pre_wrappers = []
        self.post_wrappers = []
        self.add_wrappers(*wrappers)
        self.routes = []

    def __repr__(self):
        return "<staweb.application: {}>".format(self.name)

    def add_wrappers(self, *wrappers):
        self.wrappers.extend(wrappers)

    def wrap(self, handler, when=None):
        """
        decorate a generator to run at various stages during the request

        """
        if when == "pre":
            self.pre_wrappers.append(handler)
        elif when == "post":
            self.post_wrappers.append(handler)
        else:
            self.wrappers.append(handler)
        return handler

    def route(self, pattern):
        """
        decorate a class to run when request path matches `pattern`

        """
        def register(controller):
            class Route(controller, Resource):

                __doc__ = controller.__doc__
                __web__ = pattern
                handler = controller

            self.routes.append((re.compile(r"^{}$".format(pattern)), Route))
            return Route
        return register

    def request(self, method, path, query="", headers=None, body=b""):
        """
        return `(status, headers, body)` for a request built in place

        """
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        environ = {"REQUEST_METHOD": method.upper(),
                   "SCRIPT_NAME": "",
                   "PATH_INFO": "/" + path.lstrip("/"),
                   "QUERY_STRING": query,
                   "CONTENT_LENGTH": str(len(body)),
                   "REMOTE_ADDR": "127.0.0.1",
                   "SERVER_NAME": "localhost",
                   "SERVER_PORT": "8080",
                   "SERVER_PROTOCOL": "HTTP/1.1",
                   "HTTP_HOST": "localhost:8080",
                   "wsgi.input": io.BytesIO(body),
                   "wsgi.url_scheme": "http"}
        for name, value in (headers or {}).items():
            key = name.upper().replace("-", "_")
            if key not in ("CONTENT_TYPE", "CONTENT_LENGTH"):
                key = "HTTP_" + key
            environ[key] = value
        response = []

        def start_response(status, headers):
            response.append(status)
            response.append(headers)
        response.append(b"".join(self(environ, start_response)))
        return tuple(response)

    def serve(self, port, host="127.0.0.1"):
        """Serve forever on given `port`."""
        access_log = logging.getLogger("staweb.access")
        server = gevent.pywsgi.WSGIServer((host, port), self,
                                          log=access_log)
        log.info("serving %s on %s:%s", self.name, host, port)
        server.serve_forever()

    def __call__(self, environ, start_response):
        """
        WSGI callable

        """
        tx.request._contextualize(environ)
        tx.response._contextualize()
        tx.log._contextualize()
        response_hooks = []

        def exhaust_hooks():
            for hook in response_hooks:
                try:
                    next(hook)
                except StopIteration:
                    pass

        try:
            tx.request.controller = self.get_controller(tx.request.path)
            for hook in self.pre_wrappers + self.wrappers + self.post_wrappers:
                if not inspect.isgeneratorfunction(hook):
                    msg = "`{}.{}` is not an iterator, give it a yield"
                    modname = getattr(hook, "__module__", "??")
                    raise TypeError(msg.format(modname, hook.__name__))
                _hook = hook(tx.request.controller, self)
                next(_hook)
                response_hooks.append(_hook)
            tx.response.status = "200 OK"
            body = self.get_handler(tx.request.controller,
                                    tx.request.method)()
            if body is None:
                raise NoContent("")
            tx.response.body = body
        except Status as exc:
            tx.response.status = str(exc)
            tx.response.body = exc.body
            if exc.code == "201" and getattr(exc, "location", None):
                tx.response.headers.location = exc.location
            if exc.code == "405":
                tx.response.headers.allow = ", ".join(exc.allowed)
        except Exception:
            log.exception("%s %s failed", tx.request.method, tx.request.path)
            exc = InternalServerError("internal server error")
            tx.response.status = str(exc)
            tx.response.body = exc.body
        exhaust_hooks()
        body = tx.response.body
        if isinstance(body, (dict, list)):
            header("Content-Type", "application/json")
            body = JSONEncoder().encode(body)
        elif "content-type" not in tx.response.headers:
            header("Content-Type", "text/plain")
        if not isinstance(body, bytes):
            body = bytes(str(body or ""), "utf-8")
        if tx.request.method == "HEAD" or tx.response.status[:3] in ("204",
                                                                    "304"):
            body = b""
        start_response(tx.response.status, tx.response.headers.wsgi)
        return [body]

    def get_controller(self, path):
        """Return the resource routed for `path`."""
        for pattern, resource in self.routes:
            match = pattern.match(urllib.parse.unquote(path))
            if match:
                return resource(**{k: v for k, v
                                   in match.groupdict().items() if v})

        class ResourceNotFound(Resource):
            def _get(inner_self):
                raise NotFound("Resource not found")
            _post = _put = _patch = _delete = _get
        return ResourceNotFound()

    def get_handler(self, controller, method="get"):
        name = f"_{method.lower()}"
        if name == "_head" and not hasattr(controller, name):
            name = "_get"
        try:
            handler = getattr(controller, name)
        except AttributeError:
            allowed = [m.upper() for m in methods
                       if hasattr(controller, f"_{m}")]
            raise MethodNotAllowed(f"`{method}` not allowed", allowed=allowed)
        return handler


class Context(local.local):

    """Request state, one copy per greenlet."""


class Request(Context):

    def _contextualize(self, environ):
        self.method = environ.get("REQUEST_METHOD", "GET").upper()
        self.path = environ.get("PATH_INFO", "").lstrip("/")
        raw_query = environ.get("QUERY_STRING", "")
        self.query = urllib.parse.unquote(raw_query) if raw_query else None
        self.params = dict(urllib.parse.parse_qsl(raw_query,
                                                  keep_blank_values=True))
        self.headers = headers.Headers()
        for name, value in environ.items():
            if name.startswith("HTTP_"):
                self.headers[name[5:]] = value
        if environ.get("CONTENT_TYPE"):
            self.headers.content_type = environ["CONTENT_TYPE"]
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        self.body = environ["wsgi.input"].read(length) if length else b""

    @property
    def json(self):
        """Return the request body decoded as JSON."""
        if not self.body:
            return {}
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.decoder.JSONDecodeError):
            raise BadRequest("request body is not JSON")


class Response(Context):

    def _contextualize(self):
        self.headers = headers.Headers()
        self.status = "200 OK"
        self.body = ""


class Log(Context):

    def _contextualize(self):
        self.messages = []

    def store(self, message):
        self.messages.append("{}:{}".format(time.time(), message))


class Transaction:

    request = Request()
    response = Response()
    log = Log()


tx = Transaction()


class JSONEncoder(json.JSONEncoder):

    def default(self, obj):
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return json.JSONEncoder.default(self, obj)
