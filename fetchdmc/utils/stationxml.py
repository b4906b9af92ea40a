"""
Streaming extraction of channel and station epochs from FDSN StationXML.

The service response is pushed through an lxml target parser so that no
document tree is ever built. The target is a small state machine: a stack of
element contexts, where the contexts allowed below each parent are declared
in a single transition table, plus one pointer to the leaf field that
character data is currently being appended to. Any element not declared for
its parent (e.g., response stages) is pushed as IGNORED, and so is everything
below it, which means values can only ever be read from their expected
location in the document.
"""
from collections import namedtuple
from enum import Enum
from lxml import etree

from fetchdmc.utils.accumulate import RequestKey, epoch_in_window
from fetchdmc.utils.fmt import trim_time, format_location, clean_text


ChannelEpoch = namedtuple(
    "ChannelEpoch",
    ["network", "station", "location", "channel", "start", "end",
     "latitude", "longitude", "elevation", "depth", "azimuth", "dip",
     "instrument", "sample_rate", "sensitivity", "sensitivity_frequency",
     "sensitivity_units"]
)

StationEpoch = namedtuple(
    "StationEpoch",
    ["network", "station", "latitude", "longitude", "elevation", "site",
     "start", "end"]
)


class Context(Enum):
    """Element contexts of interest within a StationXML document"""
    ROOT = "root"
    DOCUMENT = "FDSNStationXML"
    NETWORK = "Network"
    STATION = "Station"
    STATION_LATITUDE = "Station/Latitude"
    STATION_LONGITUDE = "Station/Longitude"
    STATION_ELEVATION = "Station/Elevation"
    SITE = "Station/Site"
    SITE_NAME = "Station/Site/Name"
    CHANNEL = "Channel"
    CHANNEL_LATITUDE = "Channel/Latitude"
    CHANNEL_LONGITUDE = "Channel/Longitude"
    CHANNEL_ELEVATION = "Channel/Elevation"
    CHANNEL_DEPTH = "Channel/Depth"
    CHANNEL_AZIMUTH = "Channel/Azimuth"
    CHANNEL_DIP = "Channel/Dip"
    CHANNEL_SAMPLE_RATE = "Channel/SampleRate"
    SENSOR = "Channel/Sensor"
    SENSOR_TYPE = "Channel/Sensor/Type"
    SENSOR_DESCRIPTION = "Channel/Sensor/Description"
    RESPONSE = "Channel/Response"
    SENSITIVITY = "Channel/Response/InstrumentSensitivity"
    SENSITIVITY_VALUE = "Channel/Response/InstrumentSensitivity/Value"
    SENSITIVITY_FREQUENCY = "Channel/Response/InstrumentSensitivity/Frequency"
    INPUT_UNITS = "Channel/Response/InstrumentSensitivity/InputUnits"
    INPUT_UNITS_NAME = "Channel/Response/InstrumentSensitivity/InputUnits/Name"
    IGNORED = "ignored"


# Parent context -> {child element name: child context}
TRANSITIONS = {
    Context.ROOT: {"FDSNStationXML": Context.DOCUMENT},
    Context.DOCUMENT: {"Network": Context.NETWORK},
    Context.NETWORK: {"Station": Context.STATION},
    Context.STATION: {"Latitude": Context.STATION_LATITUDE,
                      "Longitude": Context.STATION_LONGITUDE,
                      "Elevation": Context.STATION_ELEVATION,
                      "Site": Context.SITE,
                      "Channel": Context.CHANNEL},
    Context.SITE: {"Name": Context.SITE_NAME},
    Context.CHANNEL: {"Latitude": Context.CHANNEL_LATITUDE,
                      "Longitude": Context.CHANNEL_LONGITUDE,
                      "Elevation": Context.CHANNEL_ELEVATION,
                      "Depth": Context.CHANNEL_DEPTH,
                      "Azimuth": Context.CHANNEL_AZIMUTH,
                      "Dip": Context.CHANNEL_DIP,
                      "SampleRate": Context.CHANNEL_SAMPLE_RATE,
                      "Sensor": Context.SENSOR,
                      "Response": Context.RESPONSE},
    Context.SENSOR: {"Type": Context.SENSOR_TYPE,
                     "Description": Context.SENSOR_DESCRIPTION},
    Context.RESPONSE: {"InstrumentSensitivity": Context.SENSITIVITY},
    Context.SENSITIVITY: {"Value": Context.SENSITIVITY_VALUE,
                          "Frequency": Context.SENSITIVITY_FREQUENCY,
                          "InputUnits": Context.INPUT_UNITS},
    Context.INPUT_UNITS: {"Name": Context.INPUT_UNITS_NAME},
}

# Leaf context -> (record the value belongs to, field name)
LEAF_FIELDS = {
    Context.STATION_LATITUDE: ("station", "latitude"),
    Context.STATION_LONGITUDE: ("station", "longitude"),
    Context.STATION_ELEVATION: ("station", "elevation"),
    Context.SITE_NAME: ("station", "site"),
    Context.CHANNEL_LATITUDE: ("channel", "latitude"),
    Context.CHANNEL_LONGITUDE: ("channel", "longitude"),
    Context.CHANNEL_ELEVATION: ("channel", "elevation"),
    Context.CHANNEL_DEPTH: ("channel", "depth"),
    Context.CHANNEL_AZIMUTH: ("channel", "azimuth"),
    Context.CHANNEL_DIP: ("channel", "dip"),
    Context.CHANNEL_SAMPLE_RATE: ("channel", "sample_rate"),
    Context.SENSOR_TYPE: ("channel", "sensor_type"),
    Context.SENSOR_DESCRIPTION: ("channel", "sensor_description"),
    Context.SENSITIVITY_VALUE: ("channel", "sensitivity"),
    Context.SENSITIVITY_FREQUENCY: ("channel", "sensitivity_frequency"),
    Context.INPUT_UNITS_NAME: ("channel", "sensitivity_units"),
}


def _local_name(tag):
    """Strip the '{namespace}' prefix that lxml puts on tag names"""
    return tag.rsplit("}", 1)[-1]


def _value(record, field):
    """Stripped leaf value, None if the element was missing or empty"""
    val = record.get(field)
    if val is None or not val.strip():
        return None
    return val.strip()


class StationXMLExtractor:
    """
    lxml parser target which turns StationXML into ChannelEpoch (or
    StationEpoch) records for a single data selection, filtering epochs to
    the selection's time window and folding matching channels into the
    request map of an Accumulator.

    :type selection: fetchdmc.utils.select.SelectionRecord
    :param selection: the data selection the metadata was requested for
    :type accumulator: fetchdmc.utils.accumulate.Accumulator
    :param accumulator: run aggregates that records are appended to
    :type level: str
    :param level: 'station' to emit one record per station epoch, anything
        else ('channel', 'response') emits one record per channel epoch
    """
    def __init__(self, selection, accumulator, level="channel"):
        self.selection = selection
        self.accumulator = accumulator
        self.station_level = bool(level == "station")
        self.count = 0

        self._stack = [Context.ROOT]
        self._target = None
        self._network = None
        self._station = {}
        self._channel = {}

    def start(self, tag, attrib):
        parent = self._stack[-1]
        context = TRANSITIONS.get(parent, {}).get(_local_name(tag),
                                                  Context.IGNORED)
        self._stack.append(context)

        if context is Context.NETWORK:
            self._network = attrib.get("code")
        elif context is Context.STATION:
            self._station = {"station": attrib.get("code"),
                             "start": attrib.get("startDate"),
                             "end": attrib.get("endDate")}
        elif context is Context.CHANNEL:
            self._channel = {"channel": attrib.get("code"),
                             "location": attrib.get("locationCode"),
                             "start": attrib.get("startDate"),
                             "end": attrib.get("endDate")}
        elif context in LEAF_FIELDS:
            owner, field = LEAF_FIELDS[context]
            record = self._station if owner == "station" else self._channel
            record[field] = ""
            self._target = (record, field)

    def data(self, data):
        # Values may arrive in several chunks, e.g. '0' split from '.5'
        if self._target is not None:
            record, field = self._target
            record[field] += data

    def end(self, tag):
        context = self._stack.pop()
        if context in LEAF_FIELDS:
            self._target = None
        elif context is Context.CHANNEL and not self.station_level:
            self._finish_channel()
        elif context is Context.STATION and self.station_level:
            self._finish_station()

    def close(self):
        return self.count

    def _finish_channel(self):
        """
        Finalize the channel epoch that just ended: apply the selection time
        window, then store the record and widen the request range
        """
        chan, sta, sel = self._channel, self._station, self.selection
        start = trim_time(chan.get("start"))
        end = trim_time(chan.get("end"))
        if not epoch_in_window(sel.start, sel.end, start, end):
            return

        location = format_location(chan.get("location"))
        instrument = (_value(chan, "sensor_type") or
                      _value(chan, "sensor_description"))
        epoch = ChannelEpoch(
            network=self._network, station=sta.get("station"),
            location=location, channel=chan.get("channel"),
            start=start, end=end,
            latitude=_value(chan, "latitude"),
            longitude=_value(chan, "longitude"),
            elevation=_value(chan, "elevation"),
            depth=_value(chan, "depth"),
            azimuth=_value(chan, "azimuth"),
            dip=_value(chan, "dip"),
            instrument=clean_text(instrument),
            sample_rate=_value(chan, "sample_rate"),
            sensitivity=_value(chan, "sensitivity"),
            sensitivity_frequency=_value(chan, "sensitivity_frequency"),
            sensitivity_units=_value(chan, "sensitivity_units"),
        )
        self.accumulator.epochs.append(epoch)

        key = RequestKey(network=epoch.network, station=epoch.station,
                         location=location, channel=epoch.channel,
                         quality=sel.quality, start=sel.start, end=sel.end)
        self.accumulator.fold(key, start, end)
        self.count += 1

    def _finish_station(self):
        """
        Finalize the station epoch that just ended, subject to the selection
        time window
        """
        sta, sel = self._station, self.selection
        start = trim_time(sta.get("start"))
        end = trim_time(sta.get("end"))
        if not epoch_in_window(sel.start, sel.end, start, end):
            return

        site = sta.get("site")
        self.accumulator.stations.append(StationEpoch(
            network=self._network, station=sta.get("station"),
            latitude=_value(sta, "latitude"),
            longitude=_value(sta, "longitude"),
            elevation=_value(sta, "elevation"),
            site=clean_text(site.strip()) if site else None,
            start=start, end=end
        ))
        self.count += 1


def parse_station_xml(body, selection, accumulator, level="channel"):
    """
    Push a StationXML document through the streaming extractor

    :type body: bytes
    :param body: raw StationXML as returned by the station web service
    :type selection: fetchdmc.utils.select.SelectionRecord
    :param selection: the data selection the metadata was requested for
    :type accumulator: fetchdmc.utils.accumulate.Accumulator
    :param accumulator: run aggregates that records are appended to
    :type level: str
    :param level: metadata level that was requested
    :rtype: int
    :return: number of epochs that matched the selection
    :raises lxml.etree.XMLSyntaxError: if the document is not well formed
    """
    extractor = StationXMLExtractor(selection, accumulator, level=level)
    parser = etree.XMLParser(target=extractor, resolve_entities=False)
    parser.feed(body)
    return parser.close()
