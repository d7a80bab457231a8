# analyzer/src/zift/errors.py
# Error taxonomy for the scan pipeline. Only ScanError escapes scan();
# everything else degrades to "no evidence" at the layer that raises it.


class ZiftError(Exception):
    """Base class for analyzer errors."""


class ParseFailure(ZiftError):
    """Source could not be parsed into a syntax tree."""


class FoldError(ZiftError):
    """Constant folder refused, failed, or ran out of budget."""


class CacheCorruption(ZiftError):
    """A stored cache entry could not be decoded."""


class ConfigurationError(ZiftError):
    """Manifest or scan.yml is missing or unparsable."""


class ScanError(ZiftError):
    """The target directory could not be enumerated at all."""
