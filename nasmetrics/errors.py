"""Exception types raised by the plugin."""


class PluginError(Exception):
    """Base class for all plugin errors."""


class ConfigurationError(PluginError):
    """Invalid or missing configuration (unknown region, missing credentials)."""


class TransportError(PluginError):
    """A metric request could not be signed, sent or decoded."""


class ReduceError(PluginError):
    """A fetched series could not be reduced to a single value."""


class EmptySeries(ReduceError):
    """The remote API returned no datapoints for the window."""


class DivideByZero(ReduceError):
    """The latest datapoint reported a sample count of zero."""


class MalformedValue(ReduceError):
    """The latest datapoint carried a value that is not a finite float."""
