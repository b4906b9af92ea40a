"""
Per-run aggregates that are threaded through the fetch pipeline: collected
metadata records, the de-duplicated request map, byte counters and the error
tally which decides the process exit status
"""
from collections import namedtuple, OrderedDict

from fetchdmc.utils.fmt import to_timestamp


RequestKey = namedtuple(
    "RequestKey",
    ["network", "station", "location", "channel", "quality", "start", "end"]
)


def epoch_in_window(request_start, request_end, epoch_start, epoch_end):
    """
    Check whether a metadata epoch overlaps the requested time window. Any
    side that is not defined (None) is treated as open-ended and always
    satisfies its half of the overlap test.

    :type request_start: str or None
    :param request_start: requested window start
    :type request_end: str or None
    :param request_end: requested window end
    :type epoch_start: str or None
    :param epoch_start: start of the channel or station epoch
    :type epoch_end: str or None
    :param epoch_end: end of the epoch, None for open epochs
    :rtype: bool
    :return: True if the intervals overlap
    """
    if request_start is not None and epoch_end is not None:
        if to_timestamp(request_start) > to_timestamp(epoch_end):
            return False
    if request_end is not None and epoch_start is not None:
        if to_timestamp(request_end) < to_timestamp(epoch_start):
            return False
    return True


class Accumulator:
    """
    Collects the results of every metadata and data request made during a
    single run. An instance is passed into, and returned from, each fetch
    function so that no module-level state is required.
    """
    def __init__(self):
        self.epochs = []
        self.stations = []
        # RequestKey -> [earliest epoch start, latest epoch end], or None if
        # a waveform request for the key returned no data
        self.requests = OrderedDict()
        self.total_bytes = 0
        self.errors = 0

    def fold(self, key, start, end):
        """
        Add a matching channel epoch to the request map. The range stored for
        a key only ever widens: the earliest start and the latest end seen
        are kept, where an open (None) side lies beyond any defined time.

        :type key: RequestKey
        :param key: unique channel and requested time window
        :type start: str
        :param start: start of the matching epoch
        :type end: str or None
        :param end: end of the matching epoch
        """
        if key not in self.requests or self.requests[key] is None:
            self.requests[key] = [start, end]
            return

        range_start, range_end = self.requests[key]
        if range_start is not None and (
                start is None or
                to_timestamp(start) < to_timestamp(range_start)):
            range_start = start
        if range_end is not None and (
                end is None or to_timestamp(end) > to_timestamp(range_end)):
            range_end = end
        self.requests[key] = [range_start, range_end]

    def available(self):
        """
        Request keys which have not been marked as returning no data

        :rtype: list of RequestKey
        :return: keys with a defined metadata range
        """
        return [key for key, val in self.requests.items() if val is not None]
