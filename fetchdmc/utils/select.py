"""
Data selection parsing. Turns command line fields, selection list files and
BREQ_FAST request files into a uniform list of SelectionRecords which drive
all subsequent metadata and data requests.

.. note::
    Network, station, location and channel patterns may contain wildcards
    ('*', '?') and comma-separated lists. These are passed verbatim to the
    web services, nothing is expanded locally.
"""
import re
from collections import namedtuple

from fetchdmc import logger
from fetchdmc.utils.fmt import normalize_time


# Acceptable data quality codes
QUALITY_CODES = ("D", "R", "Q", "M", "B")

SelectionRecord = namedtuple(
    "SelectionRecord",
    ["network", "station", "location", "channel", "quality", "start", "end"],
    defaults=(None,) * 7
)

BreqFastLine = namedtuple(
    "BreqFastLine",
    ["station", "network", "start_fields", "end_fields", "count",
     "channels", "location"]
)

Validation = namedtuple("Validation", ["ok", "reason"])
VALID = Validation(True, None)

# Number of fixed tokens that precede the channel list on a BREQ_FAST line:
# station, network, 6 start fields, 6 end fields, channel count
_BREQ_FAST_FIXED = 15
_BREQ_FAST_QUALITY = re.compile(r"^\.QUALITY\s+(\S)")


def _pattern_validator(pattern, label):
    """
    Build a single-field validator which fully matches `pattern`

    :type pattern: str
    :param pattern: regular expression the whole value must match
    :type label: str
    :param label: human readable field name used in the rejection reason
    :rtype: function
    :return: validator taking a value and returning a Validation
    """
    regex = re.compile(pattern)

    def validator(value):
        if value is not None and regex.fullmatch(value):
            return VALID
        return Validation(False, f"unrecognized {label}: '{value}'")

    return validator


validate_station = _pattern_validator(r"[A-Za-z0-9*?]{1,5}", "station code")
validate_network = _pattern_validator(r"[-_A-Za-z0-9*?]+", "network code")
validate_channel = _pattern_validator(r"[A-Za-z0-9*?]{1,3}", "channel code")
validate_location = _pattern_validator(r"[A-Za-z0-9*?-]{1,2}", "location ID")

_DATE_TIME_PATTERNS = [("year", r"\d{4}"), ("month", r"\d{1,2}"),
                       ("day", r"\d{1,2}"), ("hour", r"\d{1,2}"),
                       ("min", r"\d{1,2}"), ("seconds", r"\d{1,2}(\.\d*)?")]
_DATE_TIME_VALIDATORS = {
    group: [_pattern_validator(pattern, f"{group} {name}")
            for name, pattern in _DATE_TIME_PATTERNS]
    for group in ["start", "end"]
}


def validate_count(value):
    """
    The declared channel count must be a positive integer

    :type value: str
    :param value: channel count token
    :rtype: Validation
    :return: validation result
    """
    if value.isdigit() and int(value) > 0:
        return VALID
    return Validation(False, f"invalid channel count field: '{value}'")


def tokenize_breq_fast_line(line):
    """
    Split one BREQ_FAST data line into named fields. The line layout is:

        STA NET YYYY MM DD HH MM SS.T YYYY MM DD HH MM SS.T N CH1 .. CHN [LOC]

    The location ID is present only if there is exactly one more token after
    the count than the count declares.

    :type line: str
    :param line: BREQ_FAST data line (not a header line)
    :rtype: BreqFastLine or None
    :return: named fields, None if the line is too short to hold the fixed
        fields
    """
    tokens = line.split()
    if len(tokens) < _BREQ_FAST_FIXED:
        return None

    count = tokens[14]
    channels = tokens[_BREQ_FAST_FIXED:]
    location = None
    if count.isdigit() and len(channels) == int(count) + 1:
        location = channels.pop()

    return BreqFastLine(station=tokens[0], network=tokens[1],
                        start_fields=tuple(tokens[2:8]),
                        end_fields=tuple(tokens[8:14]), count=count,
                        channels=tuple(channels), location=location)


def validate_breq_fast_line(fields):
    """
    Run every field validator over a tokenized BREQ_FAST line and return the
    first failure

    :type fields: BreqFastLine
    :param fields: tokenized line
    :rtype: Validation
    :return: VALID, or a Validation carrying the reason for rejection
    """
    checks = [(validate_station, fields.station),
              (validate_network, fields.network)]
    for group, values in [("start", fields.start_fields),
                          ("end", fields.end_fields)]:
        checks += list(zip(_DATE_TIME_VALIDATORS[group], values))
    checks.append((validate_count, fields.count))

    for validator, value in checks:
        result = validator(value)
        if not result.ok:
            return result

    if not fields.channels:
        return Validation(False, "no channels specified")
    if fields.location is not None:
        result = validate_location(fields.location)
        if not result.ok:
            return result
    for channel in fields.channels:
        result = validate_channel(channel)
        if not result.ok:
            return result
    if len(fields.channels) != int(fields.count):
        return Validation(False, f"channel count field ({fields.count}) does "
                                 f"not match number of channels specified "
                                 f"({len(fields.channels)})")
    return VALID


def parse_breq_fast_lines(lines):
    """
    Parse the lines of a BREQ_FAST request into SelectionRecords. One record
    is generated for each channel on a valid line. A '.QUALITY X' header
    sets the quality for all subsequent lines, other header lines (starting
    with '.') are ignored. Invalid lines are logged and skipped without
    affecting any other line.

    :type lines: list of str
    :param lines: lines of a BREQ_FAST file
    :rtype: list of SelectionRecord
    :return: data selections in file order
    """
    selections = []
    quality = None
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        if line.startswith(".QUALITY"):
            match = _BREQ_FAST_QUALITY.match(line)
            quality = None
            if match and match.group(1) in QUALITY_CODES:
                quality = match.group(1)
            continue
        if line.startswith("."):
            continue

        fields = tokenize_breq_fast_line(line)
        if fields is None:
            logger.warning(f"too few fields, skipping BREQ_FAST line {lineno}")
            continue
        result = validate_breq_fast_line(fields)
        if not result.ok:
            logger.warning(f"{result.reason}, skipping BREQ_FAST line "
                           f"{lineno}")
            continue

        try:
            start = normalize_time(" ".join(fields.start_fields))
            end = normalize_time(" ".join(fields.end_fields))
        except ValueError as e:
            logger.warning(f"{e}, skipping BREQ_FAST line {lineno}")
            continue

        for channel in fields.channels:
            selections.append(
                SelectionRecord(network=fields.network, station=fields.station,
                                location=fields.location, channel=channel,
                                quality=quality, start=start, end=end)
            )

    return selections


def parse_selection_line(line):
    """
    Parse one line of a selection list file:

        Network Station Location Channel [Quality] [Start] [End]

    With five or six tokens, the fifth token is treated as a quality code
    only if it is one of the known quality codes, otherwise it is the start
    time.

    :type line: str
    :param line: a single line from the selection list file
    :rtype: SelectionRecord or None
    :return: the parsed selection, None for comments, blank, incomplete or
        malformed lines
    """
    if line.strip().startswith("#"):
        return None
    tokens = line.split()
    if not 4 <= len(tokens) <= 7:
        if tokens:
            logger.debug(f"skipping selection line with {len(tokens)} fields: "
                         f"'{line.strip()}'")
        return None

    network, station, location, channel, *extra = tokens
    quality = start = end = None
    if len(extra) == 3 or (extra and extra[0] in QUALITY_CODES):
        quality, *extra = extra
    if extra:
        start, *extra = extra
    if extra:
        end = extra[0]

    if quality is not None and quality not in QUALITY_CODES:
        logger.debug(f"skipping selection line, unknown quality '{quality}'")
        return None
    try:
        start = normalize_time(start) if start else None
        end = normalize_time(end) if end else None
    except ValueError as e:
        logger.warning(f"{e}, skipping selection line '{line.strip()}'")
        return None

    return SelectionRecord(network=network, station=station,
                           location=location, channel=channel,
                           quality=quality, start=start, end=end)


def parse_selection_lines(lines):
    """
    Parse all lines of a selection list file, silently dropping anything
    that is not a valid selection

    :type lines: list of str
    :param lines: lines of a selection list file
    :rtype: list of SelectionRecord
    :return: data selections in file order
    """
    selections = []
    for line in lines:
        selection = parse_selection_line(line)
        if selection is not None:
            selections.append(selection)
    return selections


def selection_from_fields(network=None, station=None, location=None,
                          channel=None, quality=None, start=None, end=None):
    """
    Build the selection defined directly on the command line. Unlike file
    based selections, malformed values here are fatal.

    :rtype: SelectionRecord or None
    :return: the selection, None if no field was given at all
    :raises ValueError: for malformed times or unknown quality codes
    """
    values = [network, station, location, channel, quality, start, end]
    if all(val is None for val in values):
        return None
    if quality is not None and quality not in QUALITY_CODES:
        raise ValueError(f"unknown quality code '{quality}', must be one of "
                         f"{QUALITY_CODES}")

    return SelectionRecord(network=network, station=station,
                           location=location, channel=channel,
                           quality=quality,
                           start=normalize_time(start) if start else None,
                           end=normalize_time(end) if end else None)
