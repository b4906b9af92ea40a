#!/usr/bin/env python3
"""
FetchData: collect waveform data, metadata and instrument responses from
FDSN and IRIS web services.

Data is selected by network, station, location, channel, quality and time
window, given on the command line, in a selection list file and/or in a
BREQ_FAST request file. Each selection is first resolved against the station
web service, then waveforms (miniSEED), SAC poles and zeros and SEED RESP are
requested once per unique channel and time window.
"""
import argparse
import logging
import os
import sys
import yaml
from contextlib import nullcontext

from fetchdmc import logger, __version__
from fetchdmc.utils.accumulate import Accumulator
from fetchdmc.utils.fetch import (get_session, fetch_metadata,
                                  fetch_waveforms, fetch_responses)
from fetchdmc.utils.fmt import normalize_time
from fetchdmc.utils.io import (read_yaml, read_selection_file,
                               read_breq_fast_file, write_metadata_file,
                               write_station_file)
from fetchdmc.utils.select import selection_from_fields
from fetchdmc.utils.services import get_service_urls


class FetchData:
    """Select, request and save data and metadata from web services"""
    def __init__(self, config_file=None, verbose=0, network=None,
                 station=None, location=None, channel=None, quality=None,
                 starttime=None, endtime=None, latitude=None, longitude=None,
                 radius=None, selectfile=None, bfastfile=None, auth=None,
                 appname=None, outfile=None, metafile=None, sacpzdir=None,
                 respdir=None, xmlfile=None, updatedafter=None,
                 matchtimeseries=False, stationlevel=False,
                 responselevel=False, metadataws=None, timeseriesws=None,
                 sacpzws=None, respws=None, log_file=None, **kwargs):
        """
        .. note::
            Data selection parameters

        :type network: str
        :param network: network code(s), wildcards and comma-separated lists
            are passed to the services as-is. Default is all
        :type station: str
        :param station: station code(s), default is all
        :type location: str
        :param location: location ID(s), use '--' for blank IDs. Default all
        :type channel: str
        :param channel: channel code(s), default is all
        :type quality: str
        :param quality: data quality code, one of D, R, Q, M, B. Default is
            the service's best available quality
        :type starttime: str
        :param starttime: start of the time window, e.g. '2011/01/01 00:00:00'
            any of '-:,./T' or whitespace may separate the fields
        :type endtime: str
        :param endtime: end of the time window, same format as `starttime`
        :type latitude: str
        :param latitude: latitude range 'min:max' in degrees, either side
            may be left empty
        :type longitude: str
        :param longitude: longitude range 'min:max' in degrees, either side
            may be left empty
        :type radius: str
        :param radius: circular search 'lat:lon:maxradius[:minradius]', all
            in degrees
        :type selectfile: str
        :param selectfile: selection list file with lines of
            'Net Sta Loc Chan [Qual] [Start] [End]'
        :type bfastfile: str
        :param bfastfile: BREQ_FAST formatted request file
        :type updatedafter: str
        :param updatedafter: only select metadata updated after this time
        :type matchtimeseries: bool
        :param matchtimeseries: only select channels that have time series
            data available

        .. note::
            Web service parameters

        :type auth: str
        :param auth: 'user:password' credentials for restricted data
        :type appname: str
        :param appname: application name, reported to the data center as
            part of the HTTP User-Agent
        :type metadataws: str
        :param metadataws: station web service URL, overrides the
            environment. See `fetchdmc.utils.services` for defaults
        :type timeseriesws: str
        :param timeseriesws: dataselect web service URL
        :type sacpzws: str
        :param sacpzws: SAC poles and zeros web service URL
        :type respws: str
        :param respws: SEED RESP web service URL

        .. note::
            Output parameters

        :type outfile: str
        :param outfile: fetch waveform data and write all of it to this file
        :type metafile: str
        :param metafile: write one line of basic metadata per channel epoch
            (or per station epoch if `stationlevel`) to this file
        :type sacpzdir: str
        :param sacpzdir: existing directory to write SACPZ.N.S.L.C files to
        :type respdir: str
        :param respdir: existing directory to write RESP.N.S.L.C files to
        :type xmlfile: str
        :param xmlfile: save the raw StationXML returned for each selection
        :type stationlevel: bool
        :param stationlevel: request station-level metadata only, no channel
            information (and therefore no data) is collected
        :type responselevel: bool
        :param responselevel: request response-level metadata, mostly useful
            together with `xmlfile`

        .. note::
            Program control parameters

        :type config_file: str
        :param config_file: YAML configuration file that defines any of the
            parameters above. Values given directly take precedence
        :type verbose: int
        :param verbose: 0 logs progress, 1 adds debug messages, 2 adds
            request URLs and 3 lists all selections and requests
        :type log_file: str
        :param log_file: also write log messages to this file
        """
        self.config_file = config_file
        self.verbose = int(verbose or 0)

        # Data selection
        self.network = network
        self.station = station
        self.location = location
        self.channel = channel
        self.quality = quality
        self.starttime = starttime
        self.endtime = endtime
        self.latitude = latitude
        self.longitude = longitude
        self.radius = radius
        self.selectfile = selectfile
        self.bfastfile = bfastfile
        self.updatedafter = updatedafter
        self.matchtimeseries = bool(matchtimeseries)

        # Web services
        self._auth = auth
        self.appname = appname
        self.metadataws = metadataws
        self.timeseriesws = timeseriesws
        self.sacpzws = sacpzws
        self.respws = respws

        # Outputs
        self.outfile = outfile
        self.metafile = metafile
        self.sacpzdir = sacpzdir
        self.respdir = respdir
        self.xmlfile = xmlfile
        self.stationlevel = bool(stationlevel)
        self.responselevel = bool(responselevel)
        self.log_file = log_file

        # Internally filled attributes
        self.services = None
        self.session = None
        self.selections = None
        self.accumulator = None
        self._user = None
        self._password = None
        self._box = None
        self._radius = None

        self._set_log_level()

        # Allow User to throw in general kwargs, e.g. leftover CLI arguments
        self.kwargs = kwargs

    @property
    def level(self):
        """Metadata level requested from the station service"""
        if self.stationlevel:
            return "station"
        elif self.responselevel:
            return "response"
        return "channel"

    def _set_log_level(self):
        """Map the verbosity count onto the package logger"""
        if self.verbose:
            logger.setLevel("DEBUG")
        else:
            logger.setLevel("INFO")

    def _set_log_file(self):
        """
        Write logger to file as well as stderr, with the same format as the
        stream logger
        """
        if not self.log_file:
            return
        for handler in logger.handlers:
            if isinstance(handler, logging.FileHandler) and \
                    handler.baseFilename == os.path.abspath(self.log_file):
                return
        fh = logging.FileHandler(self.log_file)
        fh.setFormatter(logger.handlers[0].formatter)
        logger.addHandler(fh)

    def load(self, config_file=None):
        """
        Fill in parameters from a YAML config file. Parameters that were
        already given directly (e.g., on the command line) are kept.

        :type config_file: str
        :param config_file: YAML configuration file to load from
        """
        if config_file is None:
            config_file = self.config_file
        if not config_file:
            return

        logger.info(f"loading parameters from config file: {config_file}")
        config = read_yaml(config_file)
        for key, val in config.items():
            # Credentials are kept private so they are never written back out
            if key == "auth":
                if self._auth is None:
                    self._auth = val
                continue
            if not hasattr(self, key) or key.startswith("_"):
                logger.warning(f"config parameter '{key}' not recognized, "
                               f"ignoring")
                continue
            old_val = getattr(self, key)
            if old_val in [None, False, 0]:
                logger.debug(f"{key}: {old_val} -> {val}")
                setattr(self, key, val)

        self.verbose = int(self.verbose or 0)
        self._set_log_level()

    def check(self):
        """
        Check input parameter validity and normalize parameters into the
        forms used for web service queries

        :raises ValueError: for any malformed or inconsistent parameter
        """
        # Unquoted YAML values such as `location: 00` arrive as integers
        for name in ["network", "station", "location", "channel", "quality"]:
            val = getattr(self, name)
            if val is not None and (not isinstance(val, str) or not val):
                raise ValueError(f"`{name}` must be a non-empty string, not "
                                 f"{val!r}. Quote codes like '00' in YAML "
                                 f"config files")

        if self.starttime:
            self.starttime = normalize_time(self.starttime)
        if self.endtime:
            self.endtime = normalize_time(self.endtime)
        if self.updatedafter:
            self.updatedafter = normalize_time(self.updatedafter)

        if self.latitude or self.longitude:
            self._box = (_parse_range(self.latitude, "latitude") +
                         _parse_range(self.longitude, "longitude"))
        if self.radius:
            self._radius = _parse_radius(self.radius)

        if self._auth:
            if ":" not in self._auth:
                raise ValueError("`auth` must be given as 'user:password'")
            self._user, self._password = self._auth.split(":", 1)

        for name in ["selectfile", "bfastfile"]:
            fid = getattr(self, name)
            if fid and not os.path.isfile(fid):
                raise ValueError(f"cannot find `{name}`: {fid}")
        for name in ["sacpzdir", "respdir"]:
            path = getattr(self, name)
            if path and not os.path.isdir(path):
                raise ValueError(f"cannot find `{name}` output directory: "
                                 f"{path}")

        if self.stationlevel and self.responselevel:
            raise ValueError("`stationlevel` and `responselevel` are "
                             "mutually exclusive")
        if self.stationlevel and (self.outfile or self.sacpzdir or
                                  self.respdir):
            logger.warning("`stationlevel` collects no channel information, "
                           "no waveforms or responses will be fetched")

        required = [self.network, self.station, self.location, self.channel,
                    self.starttime, self.endtime, self.selectfile,
                    self.bfastfile]
        if not any(required):
            raise ValueError("no data selection given, specify codes, times, "
                             "`selectfile` or `bfastfile`")

        self.services = get_service_urls(
            metadata=self.metadataws, timeseries=self.timeseriesws,
            sacpz=self.sacpzws, resp=self.respws
        )
        for name, url in self.services.items():
            logger.debug(f"{name} service: {url}")

    def get_selections(self):
        """
        Collect data selections from all sources in order: command line
        fields, selection list file, BREQ_FAST file

        :rtype: list of fetchdmc.utils.select.SelectionRecord
        :return: all data selections
        """
        selections = []
        selection = selection_from_fields(
            network=self.network, station=self.station,
            location=self.location, channel=self.channel,
            quality=self.quality, start=self.starttime, end=self.endtime
        )
        if selection is not None:
            selections.append(selection)

        if self.selectfile:
            logger.info(f"reading data selection from list file "
                        f"'{self.selectfile}'")
            selections += read_selection_file(self.selectfile)

        if self.bfastfile:
            logger.info(f"reading data selection from BREQ_FAST file "
                        f"'{self.bfastfile}'")
            selections += read_breq_fast_file(self.bfastfile)

        if self.verbose > 2:
            logger.debug("== data selections ==")
            for sel in selections:
                logger.debug(f"    {sel}")

        return selections

    def get_metadata(self, accumulator):
        """
        Resolve every data selection against the station web service,
        collecting channel (or station) epochs and the request map

        :type accumulator: fetchdmc.utils.accumulate.Accumulator
        :param accumulator: run aggregates
        :rtype: fetchdmc.utils.accumulate.Accumulator
        :return: the updated accumulator
        """
        xml_out = open(self.xmlfile, "wb") if self.xmlfile else nullcontext()
        with xml_out as f:
            for selection in self.selections:
                accumulator = fetch_metadata(
                    self.session, self.services["metadata"], selection,
                    accumulator, level=self.level,
                    updated_after=self.updatedafter,
                    match_timeseries=self.matchtimeseries, box=self._box,
                    radius=self._radius, xml_out=f, verbose=self.verbose
                )

        if self.verbose > 2:
            logger.debug("== request list ==")
            for key, val in accumulator.requests.items():
                logger.debug(f"    {key} (metadata: {val})")

        return accumulator

    def get_waveforms(self, accumulator):
        """
        Fetch waveform data for every unique request and write it to
        `outfile`

        :type accumulator: fetchdmc.utils.accumulate.Accumulator
        :param accumulator: run aggregates
        :rtype: fetchdmc.utils.accumulate.Accumulator
        :return: the updated accumulator
        :raises OSError: if the output file cannot be opened
        """
        with open(self.outfile, "wb") as f:
            accumulator = fetch_waveforms(
                self.session, self.services["timeseries"], accumulator, f,
                use_auth=bool(self._user), verbose=self.verbose
            )
        return accumulator

    def get_responses(self, accumulator):
        """
        Fetch SAC poles and zeros and/or SEED RESP for every request that
        has data, one file per channel

        :type accumulator: fetchdmc.utils.accumulate.Accumulator
        :param accumulator: run aggregates
        :rtype: fetchdmc.utils.accumulate.Accumulator
        :return: the updated accumulator
        """
        if self.sacpzdir:
            accumulator = fetch_responses(
                self.session, self.services["sacpz"], accumulator,
                self.sacpzdir, kind="sacpz", verbose=self.verbose
            )
        if self.respdir:
            accumulator = fetch_responses(
                self.session, self.services["resp"], accumulator,
                self.respdir, kind="resp", verbose=self.verbose
            )
        return accumulator

    def write(self, accumulator):
        """
        Write the basic metadata file if requested

        :type accumulator: fetchdmc.utils.accumulate.Accumulator
        :param accumulator: run aggregates
        :raises OSError: if the metadata file cannot be opened
        """
        if not self.metafile:
            return
        if self.stationlevel:
            logger.info(f"writing metadata ({len(accumulator.stations)} "
                        f"station epochs) file")
            write_station_file(accumulator.stations, self.metafile)
        else:
            logger.info(f"writing metadata ({len(accumulator.epochs)} "
                        f"channel epochs) file")
            write_metadata_file(accumulator.epochs, self.metafile)

    def write_config(self, fid=None, overwrite=False):
        """
        Write a YAML config file based on the internal FetchData attributes,
        which can be filled in and used as input with `-c/--config`

        :type fid: str
        :param fid: name of the file to write. defaults to
            'fetchdata_config.yaml'
        :type overwrite: bool
        :param overwrite: overwrite `fid` if it already exists, otherwise
            warn and do not write
        """
        if fid is None:
            fid = "fetchdata_config.yaml"
        if not overwrite and os.path.exists(fid):
            logger.warning(f"config '{fid}' already exists. use "
                           f"`--overwrite` to write anyway.")
            return

        logger.debug(fid)
        dict_out = {key: val for key, val in vars(self).items()
                    if not key.startswith("_")}
        # Internal attributes that don't need to go into the written config
        for key in ["services", "session", "selections", "accumulator",
                    "kwargs", "config_file"]:
            del dict_out[key]

        with open(fid, "w") as f:
            yaml.dump(dict_out, f, default_flow_style=False, sort_keys=False)

    def run(self):
        """
        Run FetchData. Steps in order are:

            1) Fill in parameters from the config file, check validity
            2) Collect data selections from all input sources
            3) Resolve selections into channel epochs and unique requests
            4) Fetch waveforms, SAC poles and zeros and RESP as requested
            5) Write the metadata file

        :rtype: fetchdmc.utils.accumulate.Accumulator
        :return: run aggregates; `errors` > 0 means at least one request
            ended in an HTTP error
        """
        self._set_log_file()
        logger.debug(f"running FetchData version {__version__}")

        self.load()
        self.check()
        self.session = get_session(appname=self.appname, user=self._user,
                                   password=self._password)
        self.selections = self.get_selections()

        accumulator = Accumulator()
        accumulator = self.get_metadata(accumulator)
        if self.outfile:
            accumulator = self.get_waveforms(accumulator)
        accumulator = self.get_responses(accumulator)
        self.write(accumulator)

        self.accumulator = accumulator
        logger.info("DONE")

        return accumulator


def _parse_range(value, name):
    """
    Parse a 'min:max' range where either side may be empty

    :rtype: tuple of float or None
    :return: (min, max)
    :raises ValueError: if the range is malformed
    """
    if not value:
        return (None, None)
    parts = str(value).split(":")
    if len(parts) != 2:
        raise ValueError(f"`{name}` must be given as 'min:max', not '{value}'")
    try:
        return tuple(float(_) if _ else None for _ in parts)
    except ValueError:
        raise ValueError(f"`{name}` range '{value}' is not numeric")


def _parse_radius(value):
    """
    Parse a 'lat:lon:maxradius[:minradius]' circular search

    :rtype: tuple of float or None
    :return: (latitude, longitude, maxradius, minradius)
    :raises ValueError: if the radius definition is malformed
    """
    parts = str(value).split(":")
    if len(parts) not in [3, 4]:
        raise ValueError(f"`radius` must be given as "
                         f"'lat:lon:maxradius[:minradius]', not '{value}'")
    try:
        values = [float(_) for _ in parts]
    except ValueError:
        raise ValueError(f"`radius` '{value}' is not numeric")
    if len(values) == 3:
        values.append(None)
    return tuple(values)


def parse_args():
    """
    Define command line arguments. Short options follow the historical
    FetchData tool so that existing scripts keep working.
    """
    parser = argparse.ArgumentParser(
        description="FetchData: collect waveform data, metadata and "
                    "instrument responses from FDSN and IRIS web services",
    )
    parser.add_argument("-v", "--verbose", default=0, action="count",
                        help="increase verbosity, may be specified multiple "
                             "times")
    parser.add_argument("-N", "--net", dest="network", default=None,
                        help="network code, default is all")
    parser.add_argument("-S", "--sta", dest="station", default=None,
                        help="station code, default is all")
    parser.add_argument("-L", "--loc", dest="location", default=None,
                        help="location ID, default is all")
    parser.add_argument("-C", "--chan", dest="channel", default=None,
                        help="channel codes, default is all")
    parser.add_argument("-Q", "--qual", dest="quality", default=None,
                        help="quality indicator, default is best")
    parser.add_argument("-s", "--starttime", default=None,
                        help="start time, e.g. 'YYYY-MM-DD,HH:MM:SS'")
    parser.add_argument("-e", "--endtime", default=None,
                        help="end time, e.g. 'YYYY-MM-DD,HH:MM:SS'")
    parser.add_argument("--lat", dest="latitude", default=None,
                        help="latitude range 'min:max' in degrees")
    parser.add_argument("--lon", dest="longitude", default=None,
                        help="longitude range 'min:max' in degrees")
    parser.add_argument("--radius", default=None,
                        help="circular search 'lat:lon:maxradius[:minradius]'"
                             " in degrees")
    parser.add_argument("-l", "--listfile", dest="selectfile", default=None,
                        help="read list of selections from file")
    parser.add_argument("-b", "--bfastfile", default=None,
                        help="read list of selections from BREQ_FAST file")
    parser.add_argument("-a", "--auth", default=None,
                        help="'user:password' when authentication is needed")
    parser.add_argument("-A", "--appname", default=None,
                        help="application/version string for identification")
    parser.add_argument("-ua", "--updatedafter", default=None,
                        help="only select metadata updated after this time")
    parser.add_argument("-mts", "--matchtimeseries", default=False,
                        action="store_true",
                        help="only select channels with time series data")
    parser.add_argument("-sl", "--stationlevel", default=False,
                        action="store_true",
                        help="request station-level metadata only")
    parser.add_argument("-rl", "--responselevel", default=False,
                        action="store_true",
                        help="request response-level metadata")
    parser.add_argument("-o", "--outfile", default=None,
                        help="fetch waveform data and write to output file")
    parser.add_argument("-m", "--metafile", default=None,
                        help="write basic metadata to specified file")
    parser.add_argument("-sd", "--sacpzdir", default=None,
                        help="fetch SAC P&Zs and write files to directory")
    parser.add_argument("-rd", "--respdir", default=None,
                        help="fetch RESP and write files to directory")
    parser.add_argument("-X", "--xmlfile", default=None,
                        help="write raw StationXML to specified file")
    parser.add_argument("--metadataws", default=None,
                        help="station web service URL")
    parser.add_argument("--timeseriesws", default=None,
                        help="dataselect web service URL")
    parser.add_argument("--sacpzws", default=None,
                        help="SAC poles and zeros web service URL")
    parser.add_argument("--respws", default=None,
                        help="SEED RESP web service URL")
    parser.add_argument("-c", "--config", default="", type=str, nargs="?",
                        help="path to a YAML config file which defines "
                             "parameters used to control FetchData")
    parser.add_argument("-W", "--write", default=False, action="store_true",
                        help="write out a blank configuration file to be "
                             "filled in by the User")
    parser.add_argument("--overwrite", default=False, action="store_true",
                        help="overwrite an existing configuration file when "
                             "using '-W/--write'")
    parser.add_argument("--log_file", default=None,
                        help="also write log messages to this file")
    parser.add_argument("--version", default=False, action="store_true",
                        help="print current FetchData version number")

    return parser


def pop_location(argv):
    """
    Take the location ID out of the argument list before argparse sees it.
    argparse reads the blank location ID '--' as the end of options, so
    '-L --', '-L=--', '-L--', '--loc --' and '--loc=--' are handled here.

    :type argv: list of str
    :param argv: command line arguments, without the program name
    :rtype: tuple of (list, str or None)
    :return: remaining arguments, and the location ID if one was given
    :raises ValueError: if -L/--loc is the last argument
    """
    remaining = []
    location = None
    args = iter(argv)
    for arg in args:
        if arg in ["-L", "--loc"]:
            location = next(args, None)
            if location is None:
                raise ValueError("argument -L/--loc: expected one argument")
        elif arg.startswith("--loc="):
            location = arg[len("--loc="):]
        elif arg.startswith("-L"):
            location = arg[2:]
            if location.startswith("="):
                location = location[1:]
        else:
            remaining.append(arg)

    return remaining, location


def get_data(config_file=None, **kwargs):
    """
    Interactive/scripting function to run FetchData and return the collected
    metadata and request map.

    .. rubric::
        >>> from fetchdmc import get_data
        >>> acc = get_data(network="IU", station="ANMO", location="00",
        ...                channel="BHZ", starttime="2011-01-01",
        ...                endtime="2011-01-02", outfile="anmo.mseed")
        >>> acc.epochs[0].latitude

    :type config_file: str
    :param config_file: path to YAML config file which will fill in any
        parameters not given directly
    :rtype: fetchdmc.utils.accumulate.Accumulator
    :return: run aggregates, see FetchData.run()
    """
    fetch = FetchData(config_file=config_file, **kwargs)
    return fetch.run()


def main():
    """
    Command-line-tool function which parses command line arguments and runs
    FetchData. Exits with status 1 if any request ended in an HTTP error.

    .. rubric::
        $ fetchdata -N IU -S ANMO -L 00 -C BHZ -s 2011-01-01 -e 2011-01-02 \
            -o anmo.mseed -m anmo.meta
    """
    parser = parse_args()
    # Print help message if no arguments are given
    if len(sys.argv) == 1:
        parser.print_help()
        sys.exit(1)
    try:
        argv, location = pop_location(sys.argv[1:])
    except ValueError as e:
        parser.error(str(e))
    args = parser.parse_args(argv)
    if location is not None:
        args.location = location
    if args.version:
        print(__version__)
        return
    # Write out a blank configuration file to use as a template
    if args.write:
        FetchData().write_config(overwrite=args.overwrite)
        return

    fetch = FetchData(config_file=args.config or None, **vars(args))
    try:
        accumulator = fetch.run()
    except (ValueError, OSError) as e:
        logger.critical(e)
        sys.exit(1)

    if accumulator.errors:
        logger.warning(f"{accumulator.errors} requests ended in an error")
        sys.exit(1)


if __name__ == "__main__":
    main()
