"""
FetchData-specific formatting functions for times, sizes and file names
"""
import re
from obspy import UTCDateTime


# Any run of these characters separates the fields of a user-supplied time
TIME_SEPARATORS = re.compile(r"[-:,./T\s]+")

# Leading six components of a service-supplied time, e.g. StationXML dates
SERVICE_TIME = re.compile(r"^(\d{4})[-/,:](\d{1,2})[-/,:](\d{1,2})[-/,:T]"
                          r"(\d{1,2})[-/,:](\d{1,2})[-/,:](\d{1,2})")


def normalize_time(value):
    """
    Reassemble a loosely formatted time string into the canonical form used
    for all outgoing queries: 'YYYY-MM-DDTHH:MM:SS[.ffffff]'.

    Fields may be separated by any of '-:,./T' or whitespace, so both
    '2011/01/01 00:00:00' and '2011-01-01T00:00:00.5' are accepted. Hour,
    minute and second default to zero when only a date is given. A
    sub-second field is right-padded (or truncated) to microsecond
    precision.

    .. rubric::
        >>> normalize_time("2011/1/1 2:03:04")
        '2011-01-01T02:03:04'
        >>> normalize_time("2011-01-01T00:00:00.5")
        '2011-01-01T00:00:00.500000'

    :type value: str
    :param value: time string to normalize
    :rtype: str
    :return: canonical time string
    :raises ValueError: if the field count is wrong, any field is
        non-numeric or the resulting date does not exist
    """
    fields = [_ for _ in TIME_SEPARATORS.split(str(value).strip()) if _]
    if not 3 <= len(fields) <= 7:
        raise ValueError(f"cannot parse time '{value}', expected 3 to 7 "
                         f"fields but found {len(fields)}")
    for field in fields:
        if not field.isdigit():
            raise ValueError(f"cannot parse time '{value}', non-numeric "
                             f"field '{field}'")

    year, month, day, *clock = fields
    subsec = clock.pop() if len(clock) == 4 else None
    hour, minute, second = [int(_) for _ in clock + ["0"] * (3 - len(clock))]

    canonical = (f"{int(year):04d}-{int(month):02d}-{int(day):02d}T"
                 f"{hour:02d}:{minute:02d}:{second:02d}")
    if subsec is not None:
        canonical += f".{subsec[:6]:0<6}"

    # Let ObsPy decide whether the calendar date actually exists
    try:
        UTCDateTime(canonical)
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid time '{value}': {e}")

    return canonical


def trim_time(value):
    """
    Truncate a service-supplied time to its first six components,
    discarding sub-second and time zone suffixes, e.g.,
    '2011-01-01T00:00:00.0000Z' -> '2011-01-01T00:00:00'

    :type value: str or None
    :param value: time string returned by a web service
    :rtype: str or None
    :return: trimmed time string, None for empty input. Strings that do not
        start with a recognizable date-time are returned stripped but
        otherwise untouched
    """
    if value is None or not value.strip():
        return None
    match = SERVICE_TIME.match(value.strip())
    if not match:
        return value.strip()
    year, month, day, hour, minute, second = [int(_) for _ in match.groups()]

    return (f"{year:04d}-{month:02d}-{day:02d}T"
            f"{hour:02d}:{minute:02d}:{second:02d}")


def to_timestamp(value):
    """
    Convert a time string to POSIX epoch seconds so that times are compared
    numerically rather than by string order

    :type value: str or None
    :param value: time string understood by ObsPy UTCDateTime
    :rtype: float or None
    :return: epoch seconds, None if `value` is None
    """
    if value is None:
        return None
    return UTCDateTime(value).timestamp


def size_string(nbytes):
    """
    Return a clean, human readable size string for a given byte count

    :type nbytes: int
    :param nbytes: number of bytes
    :rtype: str
    :return: e.g., '512 Bytes', '1.5 KB', '12.0 MB'
    """
    if nbytes < 1000:
        return f"{nbytes} Bytes"
    for power, unit in enumerate(["KB", "MB", "GB", "TB"], start=1):
        scaled = nbytes / 1024 ** power
        if scaled < 1000 or unit == "TB":
            return f"{scaled:.1f} {unit}"


def format_location(location):
    """
    Service metadata reports an empty location ID as an empty string or as
    two spaces. Both are rendered with the placeholder '--'

    :type location: str or None
    :param location: location code from a web service
    :rtype: str
    :return: location code, or '--' if blank
    """
    if location is None or not location.strip():
        return "--"
    return location.strip()


def clean_text(value):
    """
    Remove line breaks and trailing whitespace from free-text metadata such
    as instrument descriptions and site names

    :type value: str or None
    :param value: free text
    :rtype: str or None
    :return: single line of text
    """
    if value is None:
        return None
    return value.replace("\n", "").replace("\r", "").rstrip()


def format_response_filename(prefix, key, blank_location=False):
    """
    Generate the per-channel output file name for response information,
    e.g., 'SACPZ.IU.ANMO.00.BHZ' or 'RESP.IU.ANMO..BHZ'

    :type prefix: str
    :param prefix: file name prefix, 'SACPZ' or 'RESP'
    :type key: fetchdmc.utils.accumulate.RequestKey
    :param key: request key providing the channel codes
    :type blank_location: bool
    :param blank_location: write the '--' location placeholder as an empty
        string, as is customary for RESP file names
    :rtype: str
    :return: file name without directory
    """
    location = key.location or ""
    if blank_location and location == "--":
        location = ""
    return f"{prefix}.{key.network}.{key.station}.{location}.{key.channel}"
