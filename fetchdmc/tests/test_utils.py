"""
Test the utility functions for time formatting, data selection parsing,
request accumulation and service resolution
"""
import os
import pytest

from fetchdmc.utils.accumulate import Accumulator, RequestKey, epoch_in_window
from fetchdmc.utils.fmt import (normalize_time, trim_time, size_string,
                                format_location, format_response_filename)
from fetchdmc.utils.io import (read_yaml, read_selection_file,
                               read_breq_fast_file, write_metadata_file,
                               METADATA_HEADER)
from fetchdmc.utils.select import (SelectionRecord, parse_selection_line,
                                   parse_breq_fast_lines,
                                   tokenize_breq_fast_line,
                                   validate_breq_fast_line,
                                   selection_from_fields)
from fetchdmc.utils.services import get_service_urls, DEFAULT_SERVICE_BASE
from fetchdmc.utils.stationxml import ChannelEpoch


BREQ_TIMES = "2011 01 01 00 00 00.0 2011 01 01 01 00 00.0"


@pytest.mark.parametrize("value,expected", [
    ("2011-01-01", "2011-01-01T00:00:00"),
    ("2011/1/1 2:03:04", "2011-01-01T02:03:04"),
    ("2011,001,01,12", "2011-01-01T12:00:00"),
    ("2011-01-01T00:00:00.5", "2011-01-01T00:00:00.500000"),
    ("2011.01.01.00.00.00.1234567", "2011-01-01T00:00:00.123456"),
])
def test_normalize_time(value, expected):
    """
    Check that any separator and field count from 3 to 7 is accepted
    """
    assert(normalize_time(value) == expected)
    # Normalized times pass through untouched
    assert(normalize_time(expected) == expected)


@pytest.mark.parametrize("value", ["2011-01", "2011-01-01T00:00:00.0.1",
                                   "2011-01-aa", "2011-02-30"])
def test_normalize_time_bad(value):
    """
    Too few or too many fields, non-numeric fields and nonexistent dates
    """
    with pytest.raises(ValueError):
        normalize_time(value)


def test_trim_time():
    """
    Service times lose their sub-second and time zone suffixes
    """
    assert(trim_time("2010-07-14T00:00:00.0000") == "2010-07-14T00:00:00")
    assert(trim_time("2599-12-31T23:59:59Z") == "2599-12-31T23:59:59")
    assert(trim_time("  ") is None)
    assert(trim_time(None) is None)


def test_size_string():
    """
    Byte counts are scaled by powers of 1024
    """
    assert(size_string(0) == "0 Bytes")
    assert(size_string(512) == "512 Bytes")
    assert(size_string(1536) == "1.5 KB")
    assert(size_string(5 * 1024 ** 2) == "5.0 MB")
    assert(size_string(3 * 1024 ** 3) == "3.0 GB")


def test_format_location_and_filenames():
    """
    Blank location IDs become '--', which RESP file names leave empty
    """
    assert(format_location("  ") == "--")
    assert(format_location("") == "--")
    assert(format_location("00") == "00")

    key = RequestKey("IU", "COLA", "--", "LHZ", None, None, None)
    assert(format_response_filename("SACPZ", key) == "SACPZ.IU.COLA.--.LHZ")
    assert(format_response_filename("RESP", key, blank_location=True) ==
           "RESP.IU.COLA..LHZ")


def test_parse_selection_line():
    """
    Check the basic Net Sta Loc Chan Start End selection line
    """
    sel = parse_selection_line(
        "II BFO 00 BHZ 2011-01-01T00:00:00 2011-01-01T01:00:00"
    )
    assert(sel == SelectionRecord(network="II", station="BFO",
                                  location="00", channel="BHZ",
                                  quality=None, start="2011-01-01T00:00:00",
                                  end="2011-01-01T01:00:00"))


def test_parse_selection_line_quality():
    """
    A fifth token is a quality code only if it is one of the known codes
    """
    sel = parse_selection_line("IU ANMO 00 BHZ M 2011-01-01")
    assert(sel.quality == "M")
    assert(sel.start == "2011-01-01T00:00:00")
    assert(sel.end is None)

    sel = parse_selection_line("IU ANMO 00 BHZ 2011-01-01")
    assert(sel.quality is None)
    assert(sel.start == "2011-01-01T00:00:00")

    # With seven tokens the fifth must be a quality code
    assert(parse_selection_line("IU ANMO 00 BHZ X 2011-01-01 2011-01-02")
           is None)


@pytest.mark.parametrize("line", ["", "# IU ANMO 00 BHZ", "IU ANMO 00",
                                  "IU ANMO 00 BHZ M 2011-01-01 2011-01-02 x",
                                  "IU ANMO 00 BHZ 2011-13-01"])
def test_parse_selection_line_skipped(line):
    """
    Comments, blank, incomplete and malformed lines produce nothing
    """
    assert(parse_selection_line(line) is None)


def test_read_selection_file(test_data):
    """
    Only the valid lines of the test list file are read
    """
    selections = read_selection_file(
        os.path.join(test_data, "test_selection.txt")
    )
    assert(len(selections) == 3)
    assert(selections[1].channel == "BH?")
    assert(selections[1].quality == "M")
    assert(selections[1].end == "2011-01-02T00:00:00")
    assert(selections[2].location == "--")
    assert(selections[2].start is None)


def test_tokenize_breq_fast_line():
    """
    The location ID is only read when the channel list has one token more
    than the declared count
    """
    fields = tokenize_breq_fast_line(f"BFO II {BREQ_TIMES} 2 BHZ BHN 00")
    assert(fields.channels == ("BHZ", "BHN"))
    assert(fields.location == "00")
    assert(validate_breq_fast_line(fields).ok)

    fields = tokenize_breq_fast_line(f"BFO II {BREQ_TIMES} 2 BHZ BHN")
    assert(fields.location is None)

    assert(tokenize_breq_fast_line("BFO II 2011 01 01") is None)


def test_validate_breq_fast_line_reasons():
    """
    Each rejection names the first field that failed
    """
    fields = tokenize_breq_fast_line(f"TOOLONG II {BREQ_TIMES} 1 BHZ")
    assert("station" in validate_breq_fast_line(fields).reason)

    fields = tokenize_breq_fast_line(
        "BFO II 11 01 01 00 00 00.0 2011 01 01 01 00 00.0 1 BHZ"
    )
    assert("start year" in validate_breq_fast_line(fields).reason)

    fields = tokenize_breq_fast_line(f"BFO II {BREQ_TIMES} 0 BHZ")
    assert("count" in validate_breq_fast_line(fields).reason)

    fields = tokenize_breq_fast_line(f"BFO II {BREQ_TIMES} 1 BHZZ")
    assert("channel code" in validate_breq_fast_line(fields).reason)


def test_parse_breq_fast_count_mismatch():
    """
    A declared channel count that does not match the channel list rejects
    the whole line
    """
    lines = [f"ANMO IU {BREQ_TIMES} 3 BHZ BHN"]
    assert(parse_breq_fast_lines(lines) == [])


def test_parse_breq_fast_one_record_per_channel():
    """
    N channels and no location produce N records without a location
    """
    lines = [".QUALITY B", f"COLA IU {BREQ_TIMES} 3 BHZ BHN BHE"]
    selections = parse_breq_fast_lines(lines)
    assert(len(selections) == 3)
    assert([_.channel for _ in selections] == ["BHZ", "BHN", "BHE"])
    for sel in selections:
        assert(sel.location is None)
        assert(sel.quality == "B")
        assert(sel.start == "2011-01-01T00:00:00.000000")
        assert(sel.end == "2011-01-01T01:00:00.000000")


def test_read_breq_fast_file(test_data):
    """
    Headers are skipped, the quality header applies and bad lines are
    dropped without affecting the others
    """
    selections = read_breq_fast_file(
        os.path.join(test_data, "test_breq_fast.txt")
    )
    assert(len(selections) == 3)
    assert([_.station for _ in selections] == ["BFO", "BFO", "COLA"])
    assert(selections[0].location == "00")
    assert(selections[2].location is None)
    assert(set(_.quality for _ in selections) == {"M"})


def test_selection_from_fields():
    """
    Command line selections are None when empty and fatal when malformed
    """
    assert(selection_from_fields() is None)

    sel = selection_from_fields(network="IU", start="2011/01/01")
    assert(sel.network == "IU")
    assert(sel.start == "2011-01-01T00:00:00")

    with pytest.raises(ValueError):
        selection_from_fields(network="IU", quality="X")
    with pytest.raises(ValueError):
        selection_from_fields(network="IU", start="2011-01")


def test_epoch_in_window():
    """
    Undefined bounds on either side are open
    """
    assert(epoch_in_window(None, None, "2000-01-01T00:00:00", None))
    assert(epoch_in_window("2011-01-01T00:00:00", "2011-01-02T00:00:00",
                           "2010-01-01T00:00:00", None))
    assert(not epoch_in_window("2011-01-01T00:00:00", None,
                               "2000-01-01T00:00:00", "2001-01-01T00:00:00"))
    assert(not epoch_in_window(None, "2011-01-01T00:00:00",
                               "2011-06-01T00:00:00", None))


def test_accumulator_fold():
    """
    The stored range for a request only ever widens
    """
    acc = Accumulator()
    key = RequestKey("II", "BFO", "00", "BHZ", None, None, None)

    acc.fold(key, "2010-07-14T00:00:00", "2011-06-01T00:00:00")
    acc.fold(key, "2011-06-01T00:00:00", "2012-01-01T00:00:00")
    assert(acc.requests[key] == ["2010-07-14T00:00:00",
                                 "2012-01-01T00:00:00"])

    acc.fold(key, "2005-01-01T00:00:00", None)
    assert(acc.requests[key] == ["2005-01-01T00:00:00", None])

    # An open end is never narrowed again
    acc.fold(key, "2006-01-01T00:00:00", "2007-01-01T00:00:00")
    assert(acc.requests[key] == ["2005-01-01T00:00:00", None])


def test_accumulator_available():
    """
    Keys marked as lacking data are not offered for further requests
    """
    acc = Accumulator()
    keys = [RequestKey("IU", sta, "00", "BHZ", None, None, None)
            for sta in ["ANMO", "COLA"]]
    for key in keys:
        acc.fold(key, "2000-01-01T00:00:00", None)
    acc.requests[keys[0]] = None
    assert(acc.available() == [keys[1]])


def test_get_service_urls():
    """
    Explicit overrides beat per-service environment variables, which beat
    the base URL
    """
    urls = get_service_urls(environ={})
    assert(urls["metadata"] == f"{DEFAULT_SERVICE_BASE}/fdsnws/station/1")
    assert(urls["resp"] == f"{DEFAULT_SERVICE_BASE}/irisws/resp/1")

    environ = {"SERVICEBASE": "http://example.org/",
               "RESPWS": "http://resp.example.org/resp/",
               "METADATAWS": "http://meta.example.org/station"}
    urls = get_service_urls(environ=environ,
                            metadata="http://localhost/station/",
                            sacpz=None)
    assert(urls["metadata"] == "http://localhost/station")
    assert(urls["timeseries"] == "http://example.org/fdsnws/dataselect/1")
    assert(urls["sacpz"] == "http://example.org/irisws/sacpz/1")
    assert(urls["resp"] == "http://resp.example.org/resp")

    with pytest.raises(ValueError):
        get_service_urls(environ={}, event="http://localhost/event")


def test_read_yaml(test_data):
    """
    'None' strings are read as None, sexagesimal-looking strings survive
    """
    config = read_yaml(os.path.join(test_data, "test_config.yaml"))
    assert(config["quality"] is None)
    assert(config["location"] == "00")
    assert(config["radius"] == "48:8:5")
    assert(config["matchtimeseries"] is True)


def test_write_metadata_file(tmpdir):
    """
    One pipe-delimited line per epoch below the header, None as empty
    """
    epoch = ChannelEpoch(
        network="II", station="BFO", location="--", channel="LHZ",
        start="1996-05-29T00:00:00", end=None, latitude="48.3319",
        longitude="8.3311", elevation="589.0", depth="0.0", azimuth="0.0",
        dip="-90.0", instrument="STS-1", sample_rate="1.0",
        sensitivity=None, sensitivity_frequency=None, sensitivity_units=None
    )
    fid = os.path.join(str(tmpdir), "meta.txt")
    write_metadata_file([epoch], fid)

    with open(fid, "r") as f:
        lines = f.read().splitlines()
    assert(lines[0] == METADATA_HEADER)
    assert(lines[1] == "II|BFO|--|LHZ|48.3319|8.3311|589.0|0.0|0.0|-90.0|"
                       "STS-1||||1.0|1996-05-29T00:00:00|")


def test_get_service_urls_no_event_service():
    """
    Only the services that are actually queried are resolved
    """
    urls = get_service_urls(environ={"EVENTWS": "http://localhost/event/1"})
    assert(sorted(urls) == ["metadata", "resp", "sacpz", "timeseries"])
