"""HTTP header multimap."""

__all__ = ["Headers"]


def normalize(name):
    """Return a canonical lowercase, hyphenated header name."""
    return name.replace("_", "-").lower()


class Headers(dict):

    """
    case-insensitive headers where a header may carry several values

    Attribute access maps underscores to hyphens.

        >>> headers = Headers()
        >>> headers.content_type = "text/plain"
        >>> headers["Content-Type"]
        'text/plain'
        >>> headers.add("Link", '</hub>; rel="hub"')
        >>> headers.add("Link", '</Things>; rel="self"')
        >>> headers.wsgi
        [('Content-Type', 'text/plain'), ('Link', '</hub>; rel="hub"'), \
('Link', '</Things>; rel="self"')]

    """

    def __init__(self, *args, **kwargs):
        super(Headers, self).__init__()
        for name, value in dict(*args, **kwargs).items():
            self[name] = value

    def __getitem__(self, name):
        return super(Headers, self).__getitem__(normalize(name))

    def __setitem__(self, name, value):
        super(Headers, self).__setitem__(normalize(name), value)

    def __delitem__(self, name):
        super(Headers, self).__delitem__(normalize(name))

    def __contains__(self, name):
        return super(Headers, self).__contains__(normalize(name))

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            return None

    def __setattr__(self, name, value):
        self[name] = value

    def get(self, name, default=None):
        return super(Headers, self).get(normalize(name), default)

    def get_list(self, name):
        """Return every value of given header."""
        value = self.get(name)
        if value is None:
            return []
        if isinstance(value, list):
            return list(value)
        return [value]

    def add(self, name, value):
        """Append a value, keeping any the header already has."""
        values = self.get_list(name)
        values.append(value)
        self[name] = values

    @property
    def wsgi(self):
        """Header list for `start_response`, one line per value."""
        lines = []
        for name, value in self.items():
            name = "-".join(part.capitalize() for part in name.split("-"))
            if isinstance(value, list):
                lines.extend((name, str(v)) for v in value)
            else:
                lines.append((name, str(value)))
        return lines
