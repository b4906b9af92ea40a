"""
Read and write utilities for FetchData
"""
import re
import yaml

from fetchdmc import logger
from fetchdmc.utils.select import parse_selection_lines, parse_breq_fast_lines


METADATA_HEADER = ("#net|sta|loc|chan|lat|lon|elev|depth|azimuth|dip|"
                   "instrument|scale|scalefreq|scaleunits|samplerate|"
                   "start|end")

STATION_HEADER = "#net|sta|lat|lon|elev|sitename|start|end"


def read_yaml(fid):
    """
    Read a YAML file and return a dictionary

    :type fid: str
    :param fid: YAML file to read from
    :rtype: dict
    :return: YAML keys and variables in a dictionary
    """
    # work around PyYAML bugs
    yaml.SafeLoader.add_implicit_resolver(
        u'tag:yaml.org,2002:float',
        re.compile(u'''^(?:
         [-+]?(?:[0-9][0-9_]*)\\.[0-9_]*(?:[eE][-+]?[0-9]+)?
        |[-+]?(?:[0-9][0-9_]*)(?:[eE][-+]?[0-9]+)
        |\\.[0-9_]+(?:[eE][-+][0-9]+)?
        |[-+]?[0-9][0-9_]*(?::[0-5]?[0-9])+\\.[0-9_]*
        |[-+]?\\.(?:inf|Inf|INF)
        |\\.(?:nan|NaN|NAN))$''', re.X),
        list(u'-+0123456789.'))

    with open(fid, "r") as f:
        config = yaml.safe_load(f) or {}

    # Replace 'None' strings to match expectations
    for key, val in config.items():
        if val == "None":
            config[key] = None

    return config


def read_selection_file(fid):
    """
    Read a selection list file, where each line is

        Network Station Location Channel [Quality] [Start] [End]

    Lines starting with '#' are comments. Incomplete or malformed lines are
    skipped.

    :type fid: str
    :param fid: path to the selection list file
    :rtype: list of fetchdmc.utils.select.SelectionRecord
    :return: data selections in file order
    """
    with open(fid, "r") as f:
        lines = f.readlines()
    selections = parse_selection_lines(lines)
    logger.debug(f"{len(selections)} selections read from '{fid}'")

    return selections


def read_breq_fast_file(fid):
    """
    Read a BREQ_FAST formatted request file. Only data lines and the
    '.QUALITY' header are used, all other headers are ignored.

    :type fid: str
    :param fid: path to the BREQ_FAST file
    :rtype: list of fetchdmc.utils.select.SelectionRecord
    :return: data selections in file order, one per channel
    """
    with open(fid, "r") as f:
        lines = f.readlines()
    selections = parse_breq_fast_lines(lines)
    logger.debug(f"{len(selections)} selections read from '{fid}'")

    return selections


def _join(values):
    """Pipe-join values, writing None as an empty field"""
    return "|".join(["" if val is None else str(val) for val in values])


def write_metadata_file(epochs, fid):
    """
    Write one pipe-delimited line per channel epoch, in the order the
    metadata service returned them, below a '#' header naming the fields.

    :type epochs: list of fetchdmc.utils.stationxml.ChannelEpoch
    :param epochs: channel epochs to write
    :type fid: str
    :param fid: output file, overwritten if it exists
    :raises OSError: if the file cannot be opened
    """
    with open(fid, "w") as f:
        f.write(f"{METADATA_HEADER}\n")
        for ep in epochs:
            f.write(_join([ep.network, ep.station, ep.location, ep.channel,
                           ep.latitude, ep.longitude, ep.elevation, ep.depth,
                           ep.azimuth, ep.dip, ep.instrument, ep.sensitivity,
                           ep.sensitivity_frequency, ep.sensitivity_units,
                           ep.sample_rate, ep.start, ep.end]) + "\n")


def write_station_file(stations, fid):
    """
    Station-level counterpart of `write_metadata_file`, one line per station
    epoch

    :type stations: list of fetchdmc.utils.stationxml.StationEpoch
    :param stations: station epochs to write
    :type fid: str
    :param fid: output file, overwritten if it exists
    :raises OSError: if the file cannot be opened
    """
    with open(fid, "w") as f:
        f.write(f"{STATION_HEADER}\n")
        for sta in stations:
            f.write(_join([sta.network, sta.station, sta.latitude,
                           sta.longitude, sta.elevation, sta.site, sta.start,
                           sta.end]) + "\n")
