"""
Grab metadata, waveforms and instrument responses from external web services.

All functions take the run Accumulator and return it, so that results,
byte counts and errors are carried explicitly from one step to the next.
"""
import os
import requests
from requests.auth import HTTPDigestAuth
from lxml import etree

from fetchdmc import logger, __version__
from fetchdmc.utils.fmt import size_string, format_response_filename
from fetchdmc.utils.stationxml import parse_station_xml


# HTTP status codes that web services use to say 'nothing matched'
NO_DATA_CODES = (204, 404)

CHUNK_SIZE = 64 * 1024

# Outcomes of a single download
OK = "ok"
NO_DATA = "no_data"
ERROR = "error"


def get_session(appname=None, user=None, password=None):
    """
    Create the HTTP session shared by all requests of a run

    :type appname: str
    :param appname: optional application name appended to the User-Agent so
        that data centers can identify the calling application
    :type user: str
    :param user: user name for restricted data, requires `password`
    :type password: str
    :param password: password for restricted data, requires `user`
    :rtype: requests.Session
    :return: session with User-Agent and (if given) digest credentials set
    """
    session = requests.Session()
    agent = f"FetchData/{__version__} Python-requests/{requests.__version__}"
    if appname:
        agent = f"{agent} ({appname})"
    session.headers["User-Agent"] = agent
    if user is not None and password is not None:
        session.auth = HTTPDigestAuth(user, password)

    return session


def format_code(record):
    """
    Dotted channel code for log messages, e.g., 'IU.ANMO.00.BHZ', where
    undefined codes are shown as '*'

    :type record: SelectionRecord or RequestKey
    :param record: anything with network, station, location, channel attrs.
    :rtype: str
    :return: dotted code
    """
    return ".".join([code or "*" for code in
                     [record.network, record.station, record.location,
                      record.channel]])


def query_url(url, params):
    """
    Full URL, including the encoded query string, used only for logging

    :type url: str
    :param url: service query URL
    :type params: dict
    :param params: query parameters
    :rtype: str
    :return: URL as it will be requested
    """
    return requests.Request("GET", url, params=params).prepare().url


def metadata_params(selection, level="channel", updated_after=None,
                    match_timeseries=False, box=None, radius=None):
    """
    Translate a data selection into FDSN station web service parameters.
    Codes and times that are not defined are left out of the query entirely
    rather than being sent as wildcards.

    :type selection: fetchdmc.utils.select.SelectionRecord
    :param selection: data selection to query metadata for
    :type level: str
    :param level: metadata level: 'station', 'channel' or 'response'
    :type updated_after: str
    :param updated_after: only return metadata updated after this time
    :type match_timeseries: bool
    :param match_timeseries: only return channels that have time series
    :type box: tuple of float
    :param box: (minlatitude, maxlatitude, minlongitude, maxlongitude), any
        of which may be None
    :type radius: tuple of float
    :param radius: (latitude, longitude, maxradius, minradius) in degrees,
        `minradius` may be None
    :rtype: dict
    :return: query parameters
    """
    params = {"level": level, "format": "xml"}
    for name, value in [("network", selection.network),
                        ("station", selection.station),
                        ("location", selection.location),
                        ("channel", selection.channel),
                        ("starttime", selection.start),
                        ("endtime", selection.end),
                        ("updatedafter", updated_after)]:
        if value:
            params[name] = value
    if match_timeseries:
        params["matchtimeseries"] = "true"
    if box is not None:
        for name, value in zip(["minlatitude", "maxlatitude",
                                "minlongitude", "maxlongitude"], box):
            if value is not None:
                params[name] = value
    if radius is not None:
        for name, value in zip(["latitude", "longitude", "maxradius",
                                "minradius"], radius):
            if value is not None:
                params[name] = value

    return params


def _report_http_error(response, url=None):
    """Log the status and the service's own error message"""
    logger.error(f"error fetching data: {response.status_code} :: "
                 f"{response.reason}")
    message = response.text.strip() if response.text else ""
    if message:
        logger.error(f"service message: {message}")
    if url:
        logger.error(f"URI: '{url}'")


def fetch_metadata(session, url, selection, accumulator, level="channel",
                   updated_after=None, match_timeseries=False, box=None,
                   radius=None, xml_out=None, verbose=0):
    """
    Query the station web service for one data selection and stream the
    returned StationXML into channel (or station) epoch records.

    'No data' responses are not errors, nothing is added. Any other failed
    request is logged with the service's message and counted as an error
    in the accumulator, but never stops the caller from continuing with the
    next selection.

    :type session: requests.Session
    :param session: HTTP session
    :type url: str
    :param url: base URL of the station service, '/query' is appended
    :type selection: fetchdmc.utils.select.SelectionRecord
    :param selection: data selection to query metadata for
    :type accumulator: fetchdmc.utils.accumulate.Accumulator
    :param accumulator: run aggregates
    :type xml_out: file object
    :param xml_out: optional binary file that the raw StationXML of each
        successful response is appended to
    :type verbose: int
    :param verbose: verbosity level, > 1 logs the request URL
    :rtype: fetchdmc.utils.accumulate.Accumulator
    :return: the updated accumulator

    See `metadata_params` for the remaining query parameters.
    """
    url = f"{url}/query"
    params = metadata_params(selection, level=level,
                             updated_after=updated_after,
                             match_timeseries=match_timeseries, box=box,
                             radius=radius)
    if verbose > 1:
        logger.debug(f"metadata URI: '{query_url(url, params)}'")
    logger.info(f"fetching metadata for {format_code(selection)}")

    try:
        response = session.get(url, params=params)
    except requests.RequestException as e:
        logger.error(f"error fetching metadata for {format_code(selection)}: "
                     f"{e}")
        accumulator.errors += 1
        return accumulator

    if response.status_code in NO_DATA_CODES:
        logger.info(f"no data available for {format_code(selection)}")
        return accumulator
    if not response.ok:
        _report_http_error(response, url=query_url(url, params))
        accumulator.errors += 1
        return accumulator

    body = response.content
    if not body:
        logger.info(f"no data available for {format_code(selection)}")
        return accumulator

    if xml_out is not None:
        xml_out.write(body)

    try:
        nepochs = parse_station_xml(body, selection, accumulator, level=level)
    except etree.XMLSyntaxError as e:
        logger.error(f"cannot parse metadata for {format_code(selection)}: "
                     f"{e}")
        accumulator.errors += 1
        return accumulator

    kind = "station" if level == "station" else "channel"
    logger.info(f"received metadata for {nepochs} {kind} epochs")

    return accumulator


def download(session, url, params, f):
    """
    Stream the body of one GET request into an open binary file

    :type session: requests.Session
    :param session: HTTP session
    :type url: str
    :param url: query URL
    :type params: dict
    :param params: query parameters
    :type f: file object
    :param f: binary file to append the response body to
    :rtype: tuple of (str, int)
    :return: outcome (OK, NO_DATA or ERROR) and number of bytes written
    """
    nbytes = 0
    try:
        with session.get(url, params=params, stream=True) as response:
            if response.status_code in NO_DATA_CODES:
                return NO_DATA, 0
            if not response.ok:
                _report_http_error(response, url=query_url(url, params))
                return ERROR, 0
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                f.write(chunk)
                nbytes += len(chunk)
    except requests.RequestException as e:
        logger.error(f"error fetching data: {e}")
        return ERROR, nbytes

    return (OK if nbytes else NO_DATA), nbytes


def fetch_waveforms(session, url, accumulator, f, use_auth=False,
                    verbose=0):
    """
    Request waveform data once for every key in the request map and write
    all returned data to a single file. Keys that return no data (or fail)
    are marked None so that response information is not requested for them.

    :type session: requests.Session
    :param session: HTTP session
    :type url: str
    :param url: base URL of the dataselect service
    :type accumulator: fetchdmc.utils.accumulate.Accumulator
    :param accumulator: run aggregates holding the request map
    :type f: file object
    :param f: open binary output file
    :type use_auth: bool
    :param use_auth: use the authenticated 'queryauth' service method
    :type verbose: int
    :param verbose: verbosity level, > 1 logs each request URL
    :rtype: fetchdmc.utils.accumulate.Accumulator
    :return: the updated accumulator
    """
    url = f"{url}/{'queryauth' if use_auth else 'query'}"
    keys = accumulator.available()
    logger.info(f"fetching waveform data for {len(keys)} requests")

    for count, key in enumerate(keys, start=1):
        params = {"net": key.network, "sta": key.station,
                  "loc": key.location, "cha": key.channel}
        for name, value in [("quality", key.quality),
                            ("starttime", key.start), ("endtime", key.end)]:
            if value:
                params[name] = value
        if verbose > 1:
            logger.debug(f"waveform URI: '{query_url(url, params)}'")

        status, nbytes = download(session, url, params, f)
        label = f"{format_code(key)} ({count}/{len(keys)})"
        if status == OK:
            logger.debug(f"downloaded {label} :: received "
                         f"{size_string(nbytes)}")
        else:
            if status == NO_DATA:
                logger.debug(f"downloaded {label} :: no data available")
            else:
                accumulator.errors += 1
            accumulator.requests[key] = None
        accumulator.total_bytes += nbytes

    logger.info(f"received {size_string(accumulator.total_bytes)} of "
                f"waveform data")

    return accumulator


def fetch_responses(session, url, accumulator, output_dir, kind="sacpz",
                    verbose=0):
    """
    Request SAC poles and zeros or SEED RESP for every key in the request map
    that has not been marked as lacking data, writing one file per channel.
    Where the request itself had no start or end time, the widest metadata
    range observed for the channel is used instead.

    :type session: requests.Session
    :param session: HTTP session
    :type url: str
    :param url: base URL of the sacpz or resp service
    :type accumulator: fetchdmc.utils.accumulate.Accumulator
    :param accumulator: run aggregates holding the request map
    :type output_dir: str
    :param output_dir: existing directory to write files into
    :type kind: str
    :param kind: 'sacpz' writes SACPZ.N.S.L.C files, 'resp' writes
        RESP.N.S.L.C files (with '--' locations left blank)
    :type verbose: int
    :param verbose: verbosity level, > 1 logs each request URL
    :rtype: fetchdmc.utils.accumulate.Accumulator
    :return: the updated accumulator
    """
    assert(kind in ["sacpz", "resp"]), "`kind` must be 'sacpz' or 'resp'"
    prefix = kind.upper()
    url = f"{url}/query"
    keys = accumulator.available()
    logger.info(f"fetching {prefix} for {len(keys)} channels")

    for count, key in enumerate(keys, start=1):
        range_start, range_end = accumulator.requests[key]
        fid = os.path.join(output_dir, format_response_filename(
            prefix, key, blank_location=bool(kind == "resp"))
        )
        params = {"net": key.network, "sta": key.station,
                  "loc": key.location, "cha": key.channel}
        for name, value in [("starttime", key.start or range_start),
                            ("endtime", key.end or range_end)]:
            if value:
                params[name] = value
        if verbose > 1:
            logger.debug(f"{prefix} URI: '{query_url(url, params)}'")

        try:
            f = open(fid, "wb")
        except OSError as e:
            logger.error(f"cannot open output file '{fid}': {e}")
            continue
        with f:
            status, nbytes = download(session, url, params, f)

        label = f"{os.path.basename(fid)} ({count}/{len(keys)})"
        if status == OK:
            logger.debug(f"downloaded {label} :: received "
                         f"{size_string(nbytes)}")
        elif status == NO_DATA:
            logger.debug(f"downloaded {label} :: no data available")
        else:
            accumulator.errors += 1

        # Do not leave empty or partially written files behind
        if nbytes == 0 or status == ERROR:
            os.remove(fid)

    return accumulator
