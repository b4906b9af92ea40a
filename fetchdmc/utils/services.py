"""
Web service endpoint resolution. Every default endpoint is derived from a
single base URL, which can itself be replaced through the environment, and
each individual service can be overridden through the environment or
explicitly by the caller.

.. note::
    Only the station, dataselect, sacpz and resp services are used. There is
    no event service lookup, so an EVENTWS environment variable is ignored.
"""
import os


DEFAULT_SERVICE_BASE = "http://service.iris.edu"

# Environment variable that replaces `DEFAULT_SERVICE_BASE`
SERVICE_BASE_ENV = "SERVICEBASE"

# Service name -> (environment override, path relative to the base URL)
SERVICES = {
    "metadata": ("METADATAWS", "fdsnws/station/1"),
    "timeseries": ("TIMESERIESWS", "fdsnws/dataselect/1"),
    "sacpz": ("SACPZWS", "irisws/sacpz/1"),
    "resp": ("RESPWS", "irisws/resp/1"),
}


def get_service_urls(environ=None, **overrides):
    """
    Resolve the base URL of each web service used by FetchData. Precedence
    from highest to lowest is: keyword `overrides`, the per-service
    environment variable, the base URL taken from SERVICEBASE, and finally
    the built-in default base.

    .. rubric::
        >>> get_service_urls(environ={})["metadata"]
        'http://service.iris.edu/fdsnws/station/1'

    :type environ: dict
    :param environ: environment to read from, defaults to os.environ
    :type overrides: str
    :param overrides: explicit service URLs keyed by service name, e.g.,
        metadata='http://localhost:8080/fdsnws/station/1'. None values are
        ignored
    :rtype: dict
    :return: service name -> base URL without trailing slash
    """
    if environ is None:
        environ = os.environ
    for name in overrides:
        if name not in SERVICES:
            raise ValueError(f"unknown service '{name}', must be one of "
                             f"{list(SERVICES)}")

    base = environ.get(SERVICE_BASE_ENV) or DEFAULT_SERVICE_BASE
    urls = {}
    for name, (env_var, path) in SERVICES.items():
        url = (overrides.get(name) or environ.get(env_var) or
               f"{base.rstrip('/')}/{path}")
        urls[name] = url.rstrip("/")

    return urls
